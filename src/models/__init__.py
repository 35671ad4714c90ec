"""Models module - SQLModel database entities."""

from src.models.ledger import (
    ACTION_DEBIT_REASONS,
    LedgerEntry,
    LedgerReason,
    MeteredAction,
    TokenAccount,
)
from src.models.payment import PaymentMethod, PaymentStatus, PaymentTransaction
from src.models.token_package import TokenPackage
from src.models.user import User, UserRole

__all__ = [
    # User
    "User",
    "UserRole",
    # Ledger
    "TokenAccount",
    "LedgerEntry",
    "LedgerReason",
    "MeteredAction",
    "ACTION_DEBIT_REASONS",
    # Packages
    "TokenPackage",
    # Payments
    "PaymentTransaction",
    "PaymentStatus",
    "PaymentMethod",
]
