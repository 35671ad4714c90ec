"""Payments API - M-Pesa token purchases and their status."""

from fastapi import APIRouter

from src.api.deps import CurrentUser, PaymentSvc, ReconcileSvc, raise_http_error
from src.core.exceptions import TokenServiceError
from src.models.payment import PaymentStatus
from src.models.user import User
from src.schemas.pagination import CustomPage
from src.schemas.payment import (
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    PaymentStatusResponse,
    PaymentTransactionResponse,
)
from src.services.payment_service import PaymentService
from src.services.reconcile_service import PaymentStatusResult

router = APIRouter(prefix="/payments", tags=["Payments"])


def _status_response(result: PaymentStatusResult) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        transaction_id=result.transaction_id,
        checkout_request_id=result.checkout_request_id,
        status=result.status,
        message=result.message,
        result_code=result.result_code,
        amount=result.amount,
        tokens_purchased=result.tokens_purchased,
        mpesa_receipt=result.mpesa_receipt,
    )


async def start_purchase(
    data: InitiatePaymentRequest,
    user: User,
    service: PaymentService,
) -> InitiatePaymentResponse:
    """Shared handler for the purchase endpoints."""
    try:
        pending = await service.initiate(
            user_id=user.id,  # type: ignore[arg-type]
            package_id=data.package_id,
            phone_number=data.phone_number,
        )
    except TokenServiceError as e:
        raise_http_error(e)

    return InitiatePaymentResponse(
        transaction_id=pending.transaction_id,
        checkout_request_id=pending.provider_reference,
        status=pending.status,
        message=pending.message,
    )


@router.post("/mpesa/initiate", response_model=InitiatePaymentResponse)
async def initiate_mpesa_payment(
    data: InitiatePaymentRequest,
    user: CurrentUser,
    service: PaymentSvc,
) -> InitiatePaymentResponse:
    """Send an STK push prompt for a token package.

    Poll `/payments/mpesa/status/{checkout_request_id}` until a terminal status.
    """
    return await start_purchase(data, user, service)


@router.get("/mpesa/status/{checkout_request_id}", response_model=PaymentStatusResponse)
async def get_mpesa_payment_status(
    checkout_request_id: str,
    user: CurrentUser,
    service: ReconcileSvc,
) -> PaymentStatusResponse:
    """Current status of a purchase; queries M-Pesa while still pending."""
    try:
        result = await service.get_status(checkout_request_id, user_id=user.id)
    except TokenServiceError as e:
        raise_http_error(e)
    return _status_response(result)


@router.get("/transactions", response_model=CustomPage[PaymentTransactionResponse])
async def list_transactions(
    user: CurrentUser,
    service: PaymentSvc,
    status: PaymentStatus | None = None,
) -> CustomPage[PaymentTransactionResponse]:
    """Purchase history of the current user, newest first."""
    return await service.list_transactions(user.id, status=status)  # type: ignore[arg-type]


@router.get("/status/{transaction_id}", response_model=PaymentStatusResponse)
async def get_transaction_status(
    transaction_id: int,
    user: CurrentUser,
    payment_service: PaymentSvc,
    reconcile_service: ReconcileSvc,
) -> PaymentStatusResponse:
    """Status of a purchase by transaction id."""
    try:
        transaction = await payment_service.get_transaction(user.id, transaction_id)  # type: ignore[arg-type]
        if transaction.status.is_terminal or transaction.provider_reference is None:
            return _status_response(PaymentStatusResult.from_transaction(transaction))
        result = await reconcile_service.get_status(transaction.provider_reference, user_id=user.id)
    except TokenServiceError as e:
        raise_http_error(e)
    return _status_response(result)
