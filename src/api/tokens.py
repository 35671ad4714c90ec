"""Tokens API - Balance, packages, metered authorization and history."""

from fastapi import APIRouter, Query

from src.api.deps import (
    AuthorizerSvc,
    CurrentUser,
    LedgerSvc,
    PackageSvc,
    PaymentSvc,
    raise_http_error,
)
from src.api.payments import start_purchase
from src.core.exceptions import TokenServiceError
from src.schemas.ledger import (
    AuthorizeRequest,
    AuthorizeResponse,
    BalanceResponse,
    CostTableResponse,
    LedgerEntryResponse,
    LedgerHistoryResponse,
)
from src.schemas.payment import InitiatePaymentRequest, InitiatePaymentResponse
from src.schemas.token_package import TokenPackageResponse
from src.services.ledger_service import LedgerService

router = APIRouter(prefix="/tokens", tags=["Tokens"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(user: CurrentUser, ledger: LedgerSvc) -> BalanceResponse:
    """Current token balance."""
    return BalanceResponse(balance=await ledger.get_balance(user.id))  # type: ignore[arg-type]


@router.get("/packages", response_model=list[TokenPackageResponse])
async def list_packages(service: PackageSvc) -> list[TokenPackageResponse]:
    """Active token packages, cheapest first."""
    packages = await service.list_active()
    return [TokenPackageResponse.model_validate(p) for p in packages]


@router.get("/packages/{package_id}", response_model=TokenPackageResponse)
async def get_package(package_id: int, service: PackageSvc) -> TokenPackageResponse:
    """Get one active package."""
    try:
        package = await service.get_active(package_id)
    except TokenServiceError as e:
        raise_http_error(e)
    return TokenPackageResponse.model_validate(package)


@router.post("/purchase", response_model=InitiatePaymentResponse)
async def purchase_tokens(
    data: InitiatePaymentRequest,
    user: CurrentUser,
    service: PaymentSvc,
) -> InitiatePaymentResponse:
    """Buy a package via M-Pesa (same as /payments/mpesa/initiate)."""
    return await start_purchase(data, user, service)


@router.get("/costs", response_model=CostTableResponse)
async def get_costs(authorizer: AuthorizerSvc) -> CostTableResponse:
    """Token cost of each metered action."""
    return CostTableResponse(costs=authorizer.costs())


@router.post("/authorize", response_model=AuthorizeResponse)
async def authorize_action(
    data: AuthorizeRequest,
    user: CurrentUser,
    authorizer: AuthorizerSvc,
) -> AuthorizeResponse:
    """Authorize a metered action and debit its cost.

    Returns 402 with `required` and `available` when the balance is too low.
    """
    try:
        result = await authorizer.authorize(user.id, data.action)  # type: ignore[arg-type]
    except TokenServiceError as e:
        raise_http_error(e)

    return AuthorizeResponse(
        authorized=result.authorized,
        action=result.action,
        cost=result.cost,
        remaining_balance=result.remaining_balance,
        entry_id=result.entry_id,
    )


@router.get("/history", response_model=LedgerHistoryResponse)
async def get_history(
    user: CurrentUser,
    ledger: LedgerSvc,
    cursor: int | None = Query(None, ge=1, description="next_cursor of the previous page"),
    limit: int = Query(
        LedgerService.HISTORY_DEFAULT_LIMIT, ge=1, le=LedgerService.HISTORY_MAX_LIMIT
    ),
) -> LedgerHistoryResponse:
    """Ledger entries of the current user, newest first."""
    entries, next_cursor = await ledger.history(user.id, cursor=cursor, limit=limit)  # type: ignore[arg-type]
    return LedgerHistoryResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        next_cursor=next_cursor,
    )
