"""Ledger schemas - Request/Response DTOs for token balances and history."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.models.ledger import LedgerReason, MeteredAction


class BalanceResponse(BaseModel):
    """Current token balance."""

    balance: int


class LedgerEntryResponse(BaseModel):
    """One ledger entry."""

    id: int
    delta: int
    reason: LedgerReason
    balance_after: int
    related_transaction_id: int | None = None
    reversed_entry_id: int | None = None
    remark: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerHistoryResponse(BaseModel):
    """One keyset page of ledger history, newest first.

    Pass next_cursor back as `cursor` to fetch the next page; it is null on
    the last page.
    """

    items: list[LedgerEntryResponse]
    next_cursor: int | None = None


class AuthorizeRequest(BaseModel):
    """Ask to perform a metered action."""

    action: str = Field(..., min_length=1, max_length=32, description="'search' or 'contact'")


class AuthorizeResponse(BaseModel):
    """Granted authorization; the cost has already been debited."""

    authorized: bool
    action: MeteredAction
    cost: int
    remaining_balance: int
    entry_id: int


class CostTableResponse(BaseModel):
    """Token cost per metered action."""

    costs: dict[str, int]


# =============================================================================
# Admin
# =============================================================================


class RewardRequest(BaseModel):
    """Grant bonus tokens to a user."""

    user_id: int = Field(..., ge=1)
    amount: int = Field(..., gt=0, le=100000)
    remark: str | None = Field(default=None, max_length=255)


class ReversalRequest(BaseModel):
    """Refund a debit whose downstream action failed."""

    entry_id: int = Field(..., ge=1)
    remark: str | None = Field(default=None, max_length=255)


class BalanceAuditResponse(BaseModel):
    """Cached balance compared with the replayed ledger."""

    user_id: int
    cached_balance: int
    replayed_balance: int
    entry_count: int
    consistent: bool
