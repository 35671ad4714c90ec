"""Schemas module - Pydantic DTOs for request/response."""

from src.schemas.ledger import (
    AuthorizeRequest,
    AuthorizeResponse,
    BalanceAuditResponse,
    BalanceResponse,
    CostTableResponse,
    LedgerEntryResponse,
    LedgerHistoryResponse,
    ReversalRequest,
    RewardRequest,
)
from src.schemas.pagination import CustomPage
from src.schemas.payment import (
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentStatusResponse,
    PaymentTransactionResponse,
    ReconcileRunResponse,
)
from src.schemas.token_package import TokenPackageResponse

__all__: list[str] = [
    # Pagination
    "CustomPage",
    # Ledger
    "BalanceResponse",
    "LedgerEntryResponse",
    "LedgerHistoryResponse",
    "AuthorizeRequest",
    "AuthorizeResponse",
    "CostTableResponse",
    "RewardRequest",
    "ReversalRequest",
    "BalanceAuditResponse",
    # Packages
    "TokenPackageResponse",
    # Payments
    "InitiatePaymentRequest",
    "InitiatePaymentResponse",
    "PaymentStatusResponse",
    "PaymentTransactionResponse",
    "ReconcileRunResponse",
]
