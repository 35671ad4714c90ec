"""Reconcile Service - Settles pending M-Pesa purchases.

Three paths learn a payment's outcome:
- client polling (get_status queries the provider once per call)
- the Daraja result callback (handle_callback)
- the background sweep (reconcile_stale, run by Celery beat)

All of them end in apply_result, which locks the transaction row and moves
it out of `pending` at most once. A completed transition credits the
purchased tokens in the same database transaction, so a payment is never
credited twice and never completed without its credit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from src.core.config import get_settings
from src.core.exceptions import DuplicateCreditError, NotFoundError, PaymentProviderError
from src.models.ledger import LedgerReason
from src.models.payment import PaymentStatus, PaymentTransaction
from src.providers import PaymentProvider, ProviderStatus, get_payment_provider
from src.services.ledger_service import LedgerService
from src.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PaymentStatusResult:
    """Status of a purchase as reported to the buyer."""

    transaction_id: int
    checkout_request_id: str | None
    status: PaymentStatus
    message: str = ""
    result_code: int | None = None
    amount: Decimal | None = None
    tokens_purchased: int | None = None
    mpesa_receipt: str | None = None

    @classmethod
    def from_transaction(
        cls, transaction: PaymentTransaction, message: str | None = None
    ) -> "PaymentStatusResult":
        return cls(
            transaction_id=transaction.id,  # type: ignore[arg-type]
            checkout_request_id=transaction.provider_reference,
            status=transaction.status,
            message=message if message is not None else (transaction.result_desc or ""),
            result_code=transaction.result_code,
            amount=transaction.amount,
            tokens_purchased=transaction.tokens_purchased,
            mpesa_receipt=transaction.mpesa_receipt,
        )


class ReconcileService:
    """Service driving the payment state machine."""

    SWEEP_BATCH_SIZE = 100

    def __init__(
        self,
        db: AsyncSession,
        provider: PaymentProvider | None = None,
        ledger_service: LedgerService | None = None,
    ):
        self.db = db
        self._provider = provider
        self.ledger = ledger_service or LedgerService(db)

    @property
    def provider(self) -> PaymentProvider:
        """Get the payment provider (lazy initialization)."""
        if self._provider is None:
            self._provider = get_payment_provider()
        return self._provider

    # ============ Lookup ============

    async def _get_by_reference(self, provider_reference: str) -> PaymentTransaction | None:
        result = await self.db.execute(
            select(PaymentTransaction).where(
                PaymentTransaction.provider_reference == provider_reference
            )
        )
        return result.scalar_one_or_none()

    async def _lock_transaction(self, transaction_id: int) -> PaymentTransaction | None:
        result = await self.db.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ============ Transition guard ============

    async def apply_result(
        self, transaction_id: int, provider_status: ProviderStatus
    ) -> PaymentTransaction:
        """Apply a provider outcome to a transaction.

        Only a `pending` row transitions. The first caller wins; later or
        concurrent callers get the already-terminal row back unchanged.

        Args:
            transaction_id: Transaction to settle
            provider_status: Outcome reported by the provider

        Returns:
            The transaction after the call

        Raises:
            NotFoundError: Transaction does not exist
        """
        try:
            transaction = await self._lock_transaction(transaction_id)
            if transaction is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")

            if transaction.status.is_terminal or not provider_status.status.is_terminal:
                if (
                    transaction.status == PaymentStatus.COMPLETED
                    and provider_status.status == PaymentStatus.COMPLETED
                    and transaction.mpesa_receipt is None
                    and provider_status.receipt
                ):
                    # STK query results carry no receipt; the callback fills it in
                    transaction.mpesa_receipt = provider_status.receipt
                    transaction.updated_at = utcnow()
                    self.db.add(transaction)
                    logger.info(
                        f"[reconcile] receipt recorded transaction_id={transaction_id} "
                        f"receipt={provider_status.receipt}"
                    )
                elif transaction.status.is_terminal and (
                    provider_status.status != transaction.status
                ):
                    logger.warning(
                        f"[reconcile] ignoring {provider_status.status.value} for "
                        f"transaction_id={transaction_id}, already {transaction.status.value}"
                    )
                await self.db.commit()
                return transaction

            now = utcnow()
            transaction.status = provider_status.status
            transaction.result_code = provider_status.result_code
            transaction.result_desc = (provider_status.message or "")[:255] or None
            transaction.updated_at = now
            transaction.completed_at = now

            if provider_status.status == PaymentStatus.COMPLETED:
                transaction.mpesa_receipt = provider_status.receipt
                if provider_status.amount is not None and provider_status.amount != transaction.amount:
                    logger.warning(
                        f"[reconcile] amount mismatch transaction_id={transaction_id} "
                        f"expected={transaction.amount} paid={provider_status.amount}"
                    )
                await self._credit_purchase(transaction)

            self.db.add(transaction)
            await self.db.commit()
        except IntegrityError:
            # A concurrent settlement of the same row got there first
            await self.db.rollback()
            transaction = await self.db.get(PaymentTransaction, transaction_id, populate_existing=True)
            if transaction is None or not transaction.status.is_terminal:
                raise
            logger.info(f"[reconcile] concurrent settlement absorbed transaction_id={transaction_id}")
            return transaction
        except NotFoundError:
            await self.db.rollback()
            raise

        logger.info(
            f"[reconcile] transaction_id={transaction_id} -> {transaction.status.value} "
            f"result_code={transaction.result_code} receipt={transaction.mpesa_receipt}"
        )
        return transaction

    async def _credit_purchase(self, transaction: PaymentTransaction) -> None:
        try:
            await self.ledger.apply_credit(
                user_id=transaction.user_id,
                amount=transaction.tokens_purchased,
                reason=LedgerReason.PURCHASE,
                related_transaction_id=transaction.id,
                remark=f"{transaction.package_name} via M-Pesa {transaction.mpesa_receipt or ''}".strip(),
            )
        except DuplicateCreditError:
            logger.warning(
                f"[reconcile] purchase credit already present transaction_id={transaction.id}"
            )

    # ============ Client polling ============

    async def get_status(
        self, provider_reference: str, user_id: int | None = None
    ) -> PaymentStatusResult:
        """Report the status of a purchase, asking the provider if still pending.

        Args:
            provider_reference: CheckoutRequestID returned at initiation
            user_id: Restrict the lookup to this buyer

        Raises:
            NotFoundError: Unknown reference (or another user's)
            PaymentProviderError: Provider query failed; the row is unchanged
        """
        transaction = await self._get_by_reference(provider_reference)
        if transaction is None or (user_id is not None and transaction.user_id != user_id):
            raise NotFoundError(f"Payment {provider_reference} not found")

        # No open transaction while waiting on the network
        await self.db.commit()

        if transaction.status.is_terminal:
            return PaymentStatusResult.from_transaction(transaction)

        provider_status = await self.provider.query_status(provider_reference)
        if not provider_status.status.is_terminal:
            return PaymentStatusResult.from_transaction(
                transaction, message=provider_status.message or "Waiting for payment confirmation"
            )

        transaction = await self.apply_result(transaction.id, provider_status)  # type: ignore[arg-type]
        return PaymentStatusResult.from_transaction(transaction)

    # ============ Provider callback ============

    async def handle_callback(self, payload: dict[str, Any]) -> PaymentTransaction | None:
        """Apply a Daraja STK result callback.

        Returns:
            The settled transaction, or None for an unknown reference

        Raises:
            PaymentProviderError: Payload is not an STK callback
        """
        provider_status = self.provider.parse_callback(payload)
        transaction = await self._get_by_reference(provider_status.provider_reference)
        if transaction is None:
            await self.db.commit()
            logger.warning(
                f"[reconcile] callback for unknown checkout_request_id="
                f"{provider_status.provider_reference} result_code={provider_status.result_code}"
            )
            return None

        logger.info(
            f"[reconcile] callback transaction_id={transaction.id} "
            f"result_code={provider_status.result_code}"
        )
        return await self.apply_result(transaction.id, provider_status)  # type: ignore[arg-type]

    # ============ Background reconciliation ============

    async def reconcile_transaction(self, transaction_id: int) -> PaymentTransaction | None:
        """Query the provider once for a single pending transaction.

        Returns:
            The transaction after the call, None if it does not exist
        """
        transaction = await self.db.get(PaymentTransaction, transaction_id)
        await self.db.commit()
        if transaction is None:
            return None
        if transaction.status.is_terminal or transaction.provider_reference is None:
            return transaction

        provider_status = await self.provider.query_status(transaction.provider_reference)
        if not provider_status.status.is_terminal:
            return transaction
        return await self.apply_result(transaction_id, provider_status)

    async def reconcile_stale(self, now: datetime | None = None) -> dict[str, int]:
        """Settle pending transactions nobody has resolved.

        Each pending row older than `payment_reconcile_after_minutes` gets one
        provider query. Rows still pending after `payment_expire_after_minutes`
        are moved to timeout. Provider errors leave the row for the next run.

        Returns:
            Counters for the sweep
        """
        settings = get_settings()
        now = now or utcnow()
        reconcile_before = now - timedelta(minutes=settings.payment_reconcile_after_minutes)
        expire_before = now - timedelta(minutes=settings.payment_expire_after_minutes)

        result = await self.db.execute(
            select(PaymentTransaction)
            .where(PaymentTransaction.status == PaymentStatus.PENDING)
            .where(PaymentTransaction.created_at < reconcile_before)
            .order_by(PaymentTransaction.created_at)
            .limit(self.SWEEP_BATCH_SIZE)
        )
        candidates = [(t.id, t.provider_reference, t.created_at) for t in result.scalars().all()]
        await self.db.commit()

        stats = {
            "checked": 0,
            "completed": 0,
            "failed": 0,
            "expired": 0,
            "still_pending": 0,
            "errors": 0,
        }

        for transaction_id, provider_reference, created_at in candidates:
            stats["checked"] += 1
            expired = created_at < expire_before

            if provider_reference is None:
                # Push never confirmed, nothing to query
                provider_status = ProviderStatus(
                    provider_reference="",
                    status=PaymentStatus.FAILED if expired else PaymentStatus.PENDING,
                    message="Payment request was not accepted by M-Pesa",
                )
            else:
                try:
                    provider_status = await self.provider.query_status(provider_reference)
                except PaymentProviderError as e:
                    stats["errors"] += 1
                    logger.warning(
                        f"[reconcile] sweep query failed transaction_id={transaction_id} "
                        f"code={e.code} error={e.message}"
                    )
                    continue

            if not provider_status.status.is_terminal:
                if not expired:
                    stats["still_pending"] += 1
                    continue
                provider_status = ProviderStatus(
                    provider_reference=provider_reference or "",
                    status=PaymentStatus.TIMEOUT,
                    message=(
                        f"No payment confirmation within "
                        f"{settings.payment_expire_after_minutes} minutes"
                    ),
                )

            transaction = await self.apply_result(transaction_id, provider_status)
            if transaction.status == PaymentStatus.COMPLETED:
                stats["completed"] += 1
            elif transaction.status == PaymentStatus.TIMEOUT and provider_status.result_code is None:
                stats["expired"] += 1
            else:
                stats["failed"] += 1

        if stats["checked"]:
            logger.info(f"[reconcile] sweep finished {stats}")
        return stats
