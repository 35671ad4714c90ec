"""Ledger Service - Token balances and the append-only ledger.

Every balance change is one LedgerEntry plus an update of the cached
TokenAccount.balance in the same database transaction. The account row is
locked (SELECT ... FOR UPDATE) for the duration of the change, which makes
debits and credits for a single user linearizable.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from src.core.exceptions import (
    DuplicateCreditError,
    InsufficientBalanceError,
    NotFoundError,
    TokenServiceError,
    ValidationError,
)
from src.models.ledger import LedgerEntry, LedgerReason, TokenAccount
from src.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for token balance and ledger business logic."""

    HISTORY_DEFAULT_LIMIT = 20
    HISTORY_MAX_LIMIT = 100

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Balance
    # =========================================================================

    async def get_balance(self, user_id: int) -> int:
        """Current token balance (0 for a user without an account)."""
        result = await self.db.execute(
            select(TokenAccount.balance).where(TokenAccount.user_id == user_id)
        )
        return result.scalar_one_or_none() or 0

    def _account_query(self, user_id: int):
        return (
            select(TokenAccount)
            .where(TokenAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    async def _lock_account(self, user_id: int) -> TokenAccount | None:
        """Lock the user's account row, None if the user has no account."""
        return (await self.db.execute(self._account_query(user_id))).scalar_one_or_none()

    async def _lock_or_create_account(self, user_id: int) -> TokenAccount:
        """Lock the user's account row, inserting a zero-balance one if missing."""
        account = await self._lock_account(user_id)
        if account is not None:
            return account

        account = TokenAccount(user_id=user_id, balance=0)
        try:
            async with self.db.begin_nested():
                self.db.add(account)
        except IntegrityError:
            # Another request created it first; lock that row instead
            account = (await self.db.execute(self._account_query(user_id))).scalar_one()
        return account

    async def _find_credit_for_transaction(
        self, related_transaction_id: int, reason: LedgerReason
    ) -> LedgerEntry | None:
        result = await self.db.execute(
            select(LedgerEntry).where(
                LedgerEntry.related_transaction_id == related_transaction_id,
                LedgerEntry.reason == reason,
            )
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Credit / Debit (caller commits)
    # =========================================================================

    async def apply_credit(
        self,
        user_id: int,
        amount: int,
        reason: LedgerReason,
        related_transaction_id: int | None = None,
        remark: str | None = None,
        operator_id: int | None = None,
        reversed_entry_id: int | None = None,
    ) -> LedgerEntry:
        """Append a credit entry and raise the cached balance.

        Does not commit. Use this when the credit must land in the same
        transaction as other row changes (e.g. a payment status transition).

        Raises:
            ValidationError: Non-positive amount or a debit reason
            DuplicateCreditError: A credit for this transaction already exists
        """
        if amount <= 0:
            raise ValidationError("Credit amount must be positive", {"amount": amount})
        if reason.is_debit:
            raise ValidationError(f"{reason.value} is not a credit reason")

        account = await self._lock_or_create_account(user_id)

        if related_transaction_id is not None:
            existing = await self._find_credit_for_transaction(related_transaction_id, reason)
            if existing is not None:
                raise DuplicateCreditError(related_transaction_id)

        account.balance = account.balance + amount
        account.updated_at = utcnow()

        entry = LedgerEntry(
            user_id=user_id,
            delta=amount,
            reason=reason,
            balance_after=account.balance,
            related_transaction_id=related_transaction_id,
            reversed_entry_id=reversed_entry_id,
            remark=remark,
            operator_id=operator_id,
        )
        self.db.add(account)
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def apply_debit(
        self,
        user_id: int,
        amount: int,
        reason: LedgerReason,
        remark: str | None = None,
    ) -> LedgerEntry:
        """Check the balance and append a debit entry under the account lock.

        Does not commit. A refused debit writes nothing.

        Raises:
            ValidationError: Non-positive amount or a credit reason
            InsufficientBalanceError: Balance lower than amount
        """
        if amount <= 0:
            raise ValidationError("Debit amount must be positive", {"amount": amount})
        if not reason.is_debit:
            raise ValidationError(f"{reason.value} is not a debit reason")

        account = await self._lock_account(user_id)
        available = account.balance if account is not None else 0
        if account is None or available < amount:
            raise InsufficientBalanceError(required=amount, available=available)

        account.balance = account.balance - amount
        account.updated_at = utcnow()

        entry = LedgerEntry(
            user_id=user_id,
            delta=-amount,
            reason=reason,
            balance_after=account.balance,
            remark=remark,
        )
        self.db.add(account)
        self.db.add(entry)
        await self.db.flush()
        return entry

    # =========================================================================
    # Credit / Debit (committing)
    # =========================================================================

    async def credit(
        self,
        user_id: int,
        amount: int,
        reason: LedgerReason,
        related_transaction_id: int | None = None,
        remark: str | None = None,
        operator_id: int | None = None,
    ) -> int:
        """Credit tokens and commit.

        A repeated credit carrying an already-applied related_transaction_id
        is a no-op that returns the current balance.

        Returns:
            Balance after the call
        """
        try:
            entry = await self.apply_credit(
                user_id=user_id,
                amount=amount,
                reason=reason,
                related_transaction_id=related_transaction_id,
                remark=remark,
                operator_id=operator_id,
            )
            await self.db.commit()
        except DuplicateCreditError:
            await self.db.rollback()
            logger.info(
                f"[ledger] duplicate credit ignored user_id={user_id} "
                f"transaction_id={related_transaction_id} reason={reason.value}"
            )
            return await self.get_balance(user_id)
        except IntegrityError:
            await self.db.rollback()
            if related_transaction_id is None or (
                await self._find_credit_for_transaction(related_transaction_id, reason) is None
            ):
                raise
            logger.info(
                f"[ledger] concurrent duplicate credit ignored user_id={user_id} "
                f"transaction_id={related_transaction_id}"
            )
            return await self.get_balance(user_id)
        except TokenServiceError:
            await self.db.rollback()
            raise

        logger.info(
            f"[ledger] credit user_id={user_id} amount={amount} reason={reason.value} "
            f"balance={entry.balance_after}"
        )
        return entry.balance_after

    async def debit(
        self,
        user_id: int,
        amount: int,
        reason: LedgerReason,
        remark: str | None = None,
    ) -> int:
        """Debit tokens and commit.

        Returns:
            Balance after the debit

        Raises:
            InsufficientBalanceError: Balance lower than amount
        """
        try:
            entry = await self.apply_debit(user_id, amount, reason, remark=remark)
            await self.db.commit()
        except TokenServiceError:
            await self.db.rollback()
            raise

        logger.info(
            f"[ledger] debit user_id={user_id} amount={amount} reason={reason.value} "
            f"balance={entry.balance_after}"
        )
        return entry.balance_after

    async def reverse_debit(
        self,
        entry_id: int,
        remark: str | None = None,
        operator_id: int | None = None,
    ) -> LedgerEntry:
        """Refund a debit whose downstream action failed.

        Idempotent: a debit is reversed at most once; a repeated call returns
        the existing reversal entry.

        Raises:
            NotFoundError: Entry does not exist
            ValidationError: Entry is not a debit
        """
        debit = await self.db.get(LedgerEntry, entry_id)
        if debit is None:
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        if not debit.reason.is_debit:
            raise ValidationError("Only debit entries can be reversed", {"entry_id": entry_id})

        try:
            await self._lock_or_create_account(debit.user_id)
            existing = await self._find_reversal(entry_id)
            if existing is not None:
                await self.db.commit()
                return existing

            entry = await self.apply_credit(
                user_id=debit.user_id,
                amount=-debit.delta,
                reason=LedgerReason.REVERSAL,
                remark=remark or f"Reversal of {debit.reason.value} entry {entry_id}",
                operator_id=operator_id,
                reversed_entry_id=entry_id,
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._find_reversal(entry_id)
            if existing is None:
                raise
            return existing

        logger.info(
            f"[ledger] reversal user_id={debit.user_id} entry_id={entry_id} "
            f"amount={entry.delta} balance={entry.balance_after}"
        )
        return entry

    async def _find_reversal(self, entry_id: int) -> LedgerEntry | None:
        result = await self.db.execute(
            select(LedgerEntry).where(LedgerEntry.reversed_entry_id == entry_id)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # History & Audit
    # =========================================================================

    async def history(
        self,
        user_id: int,
        cursor: int | None = None,
        limit: int = HISTORY_DEFAULT_LIMIT,
    ) -> tuple[list[LedgerEntry], int | None]:
        """One page of ledger entries, newest first.

        Args:
            user_id: Account owner
            cursor: Return entries older than this entry id (None = newest)
            limit: Page size (capped at HISTORY_MAX_LIMIT)

        Returns:
            Tuple of (entries, next_cursor); next_cursor is None on the last page
        """
        limit = max(1, min(limit, self.HISTORY_MAX_LIMIT))
        query = select(LedgerEntry).where(LedgerEntry.user_id == user_id)
        if cursor is not None:
            query = query.where(LedgerEntry.id < cursor)
        query = query.order_by(LedgerEntry.id.desc()).limit(limit + 1)

        entries = list((await self.db.execute(query)).scalars().all())
        if len(entries) > limit:
            entries = entries[:limit]
            return entries, entries[-1].id
        return entries, None

    async def iter_history(
        self,
        user_id: int,
        page_size: int = 50,
        cursor: int | None = None,
    ) -> AsyncIterator[LedgerEntry]:
        """Lazily walk the whole history, newest first, one page at a time."""
        while True:
            entries, cursor = await self.history(user_id, cursor=cursor, limit=page_size)
            for entry in entries:
                yield entry
            if cursor is None:
                return

    async def audit(self, user_id: int) -> dict[str, Any]:
        """Replay the ledger and compare it with the cached balance."""
        cached = await self.get_balance(user_id)
        row = (
            await self.db.execute(
                select(
                    func.coalesce(func.sum(LedgerEntry.delta), 0),
                    func.count(LedgerEntry.id),
                ).where(LedgerEntry.user_id == user_id)
            )
        ).one()
        replayed, entry_count = int(row[0]), int(row[1])

        consistent = cached == replayed
        if not consistent:
            logger.error(
                f"[ledger] balance drift user_id={user_id} cached={cached} replayed={replayed}"
            )

        return {
            "user_id": user_id,
            "cached_balance": cached,
            "replayed_balance": replayed,
            "entry_count": entry_count,
            "consistent": consistent,
        }
