"""Rental Token Service - Token ledger models.

This module defines:
1. Token Account - cached token balance per user
2. Ledger Entry - append-only log of every balance change
"""

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from src.utils.helpers import utcnow


class MeteredAction(str, Enum):
    """Actions gated behind the token balance."""

    SEARCH = "search"
    CONTACT = "contact"


class LedgerReason(str, Enum):
    """Why a balance changed."""

    # Credits
    PURCHASE = "purchase"  # M-Pesa package purchase
    REWARD = "reward"  # Granted by an admin
    REVERSAL = "reversal"  # Compensation for a failed metered action

    # Debits
    SEARCH_DEBIT = "search_debit"
    CONTACT_DEBIT = "contact_debit"

    @property
    def is_debit(self) -> bool:
        return self in (LedgerReason.SEARCH_DEBIT, LedgerReason.CONTACT_DEBIT)


ACTION_DEBIT_REASONS: dict[MeteredAction, LedgerReason] = {
    MeteredAction.SEARCH: LedgerReason.SEARCH_DEBIT,
    MeteredAction.CONTACT: LedgerReason.CONTACT_DEBIT,
}


# =============================================================================
# 1. Token Account
# =============================================================================


class TokenAccount(SQLModel, table=True):
    """Cached token balance for one user.

    Updated in the same database transaction as every LedgerEntry insert, so
    balance always equals the sum of the user's entry deltas. The row is the
    per-user lock for debits and credits (SELECT ... FOR UPDATE).

    Attributes:
        user_id: Owner (primary key)
        balance: Current token balance, never negative
    """

    __tablename__ = "token_accounts"
    __table_args__ = (sa.CheckConstraint("balance >= 0", name="ck_token_accounts_balance"),)

    user_id: int = Field(foreign_key="users.id", primary_key=True)
    balance: int = Field(default=0, sa_column=sa.Column(sa.Integer, nullable=False, default=0))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# 2. Ledger Entry
# =============================================================================


class LedgerEntry(SQLModel, table=True):
    """Immutable record of one balance change.

    Attributes:
        id: Auto-increment primary key (also the history cursor)
        user_id: User whose balance changed
        delta: Signed token change (positive=credit, negative=debit)
        reason: Why the balance changed
        balance_after: Cached balance right after this entry
        related_transaction_id: Payment transaction that funded a purchase credit
        reversed_entry_id: Debit entry compensated by a reversal
        remark: Description/notes
        operator_id: Admin who granted a reward or reversal (if any)
        created_at: Record creation time
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        sa.UniqueConstraint(
            "related_transaction_id", "reason", name="uq_ledger_entries_transaction_reason"
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)

    delta: int = Field(description="Signed token change")
    reason: LedgerReason = Field(index=True)
    balance_after: int = Field(description="Balance after this change")

    related_transaction_id: int | None = Field(
        default=None, foreign_key="payment_transactions.id", index=True
    )
    reversed_entry_id: int | None = Field(
        default=None, foreign_key="ledger_entries.id", unique=True
    )

    remark: str | None = Field(default=None, max_length=500)
    operator_id: int | None = Field(default=None, foreign_key="users.id")

    created_at: datetime = Field(default_factory=utcnow, index=True)
