"""Payment schemas - Request/Response DTOs for M-Pesa token purchases."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from src.models.payment import PaymentMethod, PaymentStatus


class InitiatePaymentRequest(BaseModel):
    """Start an STK push purchase."""

    package_id: int = Field(..., ge=1, description="Token package to buy")
    phone_number: str = Field(
        ...,
        min_length=9,
        max_length=20,
        description="Safaricom number, e.g. 0712345678 or 254712345678",
    )


class InitiatePaymentResponse(BaseModel):
    """Accepted purchase, poll its status with checkout_request_id."""

    transaction_id: int
    checkout_request_id: str
    status: PaymentStatus
    message: str


class PaymentStatusResponse(BaseModel):
    """Current state of a purchase."""

    transaction_id: int
    checkout_request_id: str | None = None
    status: PaymentStatus
    message: str = ""
    result_code: int | None = None
    amount: Decimal | None = None
    tokens_purchased: int | None = None
    mpesa_receipt: str | None = None


class PaymentTransactionResponse(BaseModel):
    """Purchase history item."""

    id: int
    package_id: int
    package_name: str
    amount: Decimal
    currency: str
    tokens_purchased: int
    payment_method: PaymentMethod
    phone_number: str
    provider_reference: str | None = None
    status: PaymentStatus
    result_code: int | None = None
    result_desc: str | None = None
    mpesa_receipt: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class ReconcileRunResponse(BaseModel):
    """Summary of one reconciliation sweep."""

    checked: int
    completed: int
    failed: int
    expired: int
    still_pending: int
    errors: int
