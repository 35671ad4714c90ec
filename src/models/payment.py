"""Rental Token Service - Payment transaction model."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from src.utils.helpers import utcnow


class PaymentStatus(str, Enum):
    """Payment status.

    State transitions:
    - pending -> completed / failed / cancelled / timeout
    Terminal states are final.
    """

    PENDING = "pending"  # STK prompt sent, waiting for the customer
    COMPLETED = "completed"  # Paid, tokens credited
    FAILED = "failed"  # Rejected by M-Pesa or the push failed
    CANCELLED = "cancelled"  # Customer dismissed the prompt
    TIMEOUT = "timeout"  # No answer within the provider/reconciliation window

    @property
    def is_terminal(self) -> bool:
        return self != PaymentStatus.PENDING


class PaymentMethod(str, Enum):
    """Payment method."""

    MPESA = "mpesa"


class PaymentTransaction(SQLModel, table=True):
    """One attempt to buy a token package.

    Created `pending` before the provider is contacted, then moved exactly
    once to a terminal state by the reconciler.

    Attributes:
        id: Auto-increment primary key
        user_id: Buyer
        package_id: Package bought

        package_name: Package name at initiation
        amount: Price charged at initiation
        currency: Currency at initiation
        tokens_purchased: Tokens to credit on completion

        phone_number: Canonical MSISDN (2547XXXXXXXX)
        provider_reference: Daraja CheckoutRequestID
        merchant_request_id: Daraja MerchantRequestID

        status: pending/completed/failed/cancelled/timeout
        result_code: Provider result code
        result_desc: Provider result message
        mpesa_receipt: M-Pesa receipt number (completed payments)
    """

    __tablename__ = "payment_transactions"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    package_id: int = Field(foreign_key="token_packages.id", index=True)

    package_name: str = Field(max_length=100)
    amount: Decimal = Field(sa_column=sa.Column(sa.DECIMAL(12, 2), nullable=False))
    currency: str = Field(default="KES", max_length=3)
    tokens_purchased: int

    payment_method: PaymentMethod = Field(default=PaymentMethod.MPESA)
    phone_number: str = Field(max_length=15)
    provider_reference: str | None = Field(default=None, max_length=64, unique=True, index=True)
    merchant_request_id: str | None = Field(default=None, max_length=64)

    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    result_code: int | None = Field(default=None)
    result_desc: str | None = Field(default=None, max_length=255)
    mpesa_receipt: str | None = Field(default=None, max_length=32)

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = Field(default=None, description="Terminal transition time")

    @property
    def account_reference(self) -> str:
        """AccountReference shown on the customer's M-Pesa prompt (max 12 chars)."""
        return f"TKN{self.id}"
