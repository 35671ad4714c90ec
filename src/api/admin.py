"""Rental Token Service - Admin API endpoints.

Admin only endpoints for support and operations:
- granting reward tokens
- refunding a debit whose downstream action failed
- replaying a user's ledger against the cached balance
- running the payment reconciliation sweep on demand
"""

import logging

from fastapi import APIRouter, HTTPException, status

from src.api.deps import AdminUser, LedgerSvc, ReconcileSvc, raise_http_error
from src.core.exceptions import TokenServiceError
from src.models.ledger import LedgerReason
from src.models.user import User
from src.schemas.ledger import (
    BalanceAuditResponse,
    BalanceResponse,
    LedgerEntryResponse,
    RewardRequest,
    ReversalRequest,
)
from src.schemas.payment import ReconcileRunResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/tokens/rewards", response_model=BalanceResponse)
async def grant_reward(data: RewardRequest, admin: AdminUser, ledger: LedgerSvc) -> BalanceResponse:
    """Credit reward tokens to a user."""
    target = await ledger.db.get(User, data.user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    try:
        balance = await ledger.credit(
            user_id=data.user_id,
            amount=data.amount,
            reason=LedgerReason.REWARD,
            remark=data.remark,
            operator_id=admin.id,
        )
    except TokenServiceError as e:
        raise_http_error(e)

    logger.info(f"[admin] reward user_id={data.user_id} amount={data.amount} by admin_id={admin.id}")
    return BalanceResponse(balance=balance)


@router.post("/tokens/reversals", response_model=LedgerEntryResponse)
async def reverse_debit(data: ReversalRequest, admin: AdminUser, ledger: LedgerSvc) -> LedgerEntryResponse:
    """Refund a metered debit. Repeating the call returns the same reversal."""
    try:
        entry = await ledger.reverse_debit(data.entry_id, remark=data.remark, operator_id=admin.id)
    except TokenServiceError as e:
        raise_http_error(e)
    return LedgerEntryResponse.model_validate(entry)


@router.get("/tokens/audit/{user_id}", response_model=BalanceAuditResponse)
async def audit_balance(user_id: int, admin: AdminUser, ledger: LedgerSvc) -> BalanceAuditResponse:
    """Compare the cached balance with the sum of ledger deltas."""
    return BalanceAuditResponse(**await ledger.audit(user_id))


@router.post("/payments/reconcile", response_model=ReconcileRunResponse)
async def run_reconciliation(admin: AdminUser, service: ReconcileSvc) -> ReconcileRunResponse:
    """Run one reconciliation sweep over stale pending purchases."""
    stats = await service.reconcile_stale()
    logger.info(f"[admin] manual reconciliation by admin_id={admin.id}: {stats}")
    return ReconcileRunResponse(**stats)
