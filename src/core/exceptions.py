"""Rental Token Service - Custom exceptions."""

from typing import Any


class TokenServiceError(Exception):
    """Base exception for all token service errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(TokenServiceError):
    """Authentication failed."""

    pass


class AuthorizationError(TokenServiceError):
    """User lacks permission for this action."""

    pass


class ValidationError(TokenServiceError):
    """Input validation failed."""

    pass


class NotFoundError(TokenServiceError):
    """Requested package, transaction or ledger entry does not exist."""

    pass


class InsufficientBalanceError(TokenServiceError):
    """User's token balance does not cover the requested amount."""

    def __init__(
        self,
        required: int,
        available: int,
        message: str = "Insufficient token balance",
    ) -> None:
        self.required = required
        self.available = available
        super().__init__(message, {"required": required, "available": available})


class UnknownActionError(TokenServiceError):
    """Metered action name is not in the cost table."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Unknown metered action: {action!r}", {"action": action})


class InvalidPhoneNumberError(ValidationError):
    """Phone number is not a recognized M-Pesa subscriber number."""

    def __init__(self, phone_number: str) -> None:
        super().__init__(
            "Please enter a valid Safaricom phone number",
            {"phone_number": phone_number},
        )


class PaymentProviderError(TokenServiceError):
    """Payment provider call failed.

    Attributes:
        code: Classification (network_error, timeout, auth_error, rejected, invalid_response)
        transient: True if the caller may retry the same call
    """

    TRANSIENT_CODES = frozenset({"network_error", "timeout", "auth_error"})

    def __init__(
        self,
        message: str,
        code: str = "network_error",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.transient = code in self.TRANSIENT_CODES
        super().__init__(message, {"code": code, "transient": self.transient, **(details or {})})


class DuplicateCreditError(TokenServiceError):
    """A credit for this transaction was already applied (internal only)."""

    def __init__(self, related_transaction_id: int) -> None:
        self.related_transaction_id = related_transaction_id
        super().__init__(
            f"Credit already applied for transaction {related_transaction_id}",
            {"related_transaction_id": related_transaction_id},
        )
