"""Core module - configuration and exceptions."""

from src.core.config import Settings, get_settings
from src.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    DuplicateCreditError,
    InsufficientBalanceError,
    InvalidPhoneNumberError,
    NotFoundError,
    PaymentProviderError,
    TokenServiceError,
    UnknownActionError,
    ValidationError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "TokenServiceError",
    "AuthenticationError",
    "AuthorizationError",
    "ValidationError",
    "NotFoundError",
    "InsufficientBalanceError",
    "InvalidPhoneNumberError",
    "UnknownActionError",
    "PaymentProviderError",
    "DuplicateCreditError",
]
