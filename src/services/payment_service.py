"""Payment Service - Starts M-Pesa token purchases.

A purchase is a PaymentTransaction row that is committed `pending` before
the provider is contacted, so every STK prompt a customer may answer has a
row the reconciler can settle.
"""

import logging
from dataclasses import dataclass

from fastapi_pagination.ext.sqlmodel import apaginate
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from src.core.config import get_settings
from src.core.exceptions import NotFoundError, PaymentProviderError
from src.models.payment import PaymentMethod, PaymentStatus, PaymentTransaction
from src.providers import PaymentProvider, get_payment_provider
from src.schemas.payment import PaymentTransactionResponse
from src.services.package_service import PackageService
from src.utils.helpers import utcnow
from src.utils.phone import mask_msisdn, normalize_msisdn

logger = logging.getLogger(__name__)


@dataclass
class PendingPayment:
    """Accepted purchase waiting for the customer to answer the prompt."""

    transaction_id: int
    provider_reference: str
    status: PaymentStatus
    message: str


class PaymentService:
    """Service for initiating and listing token purchases."""

    def __init__(
        self,
        db: AsyncSession,
        provider: PaymentProvider | None = None,
        schedule_status_check: bool = True,
    ):
        self.db = db
        self._provider = provider
        self.schedule_status_check = schedule_status_check

    @property
    def provider(self) -> PaymentProvider:
        """Get the payment provider (lazy initialization)."""
        if self._provider is None:
            self._provider = get_payment_provider()
        return self._provider

    async def initiate(self, user_id: int, package_id: int, phone_number: str) -> PendingPayment:
        """Start an STK push purchase of a token package.

        Args:
            user_id: Buyer
            package_id: Active package to buy
            phone_number: Safaricom number in any accepted format

        Returns:
            PendingPayment carrying the CheckoutRequestID to poll

        Raises:
            InvalidPhoneNumberError: Phone number is not a valid Safaricom MSISDN
            NotFoundError: Package missing or inactive
            PaymentProviderError: Provider refused or could not be reached
        """
        msisdn = normalize_msisdn(phone_number)
        package = await PackageService(self.db).get_active(package_id)

        transaction = PaymentTransaction(
            user_id=user_id,
            package_id=package.id,
            package_name=package.name,
            amount=package.price,
            currency=package.currency,
            tokens_purchased=package.token_count,
            payment_method=PaymentMethod.MPESA,
            phone_number=msisdn,
            status=PaymentStatus.PENDING,
        )
        self.db.add(transaction)
        # Row exists before the customer can be prompted
        await self.db.commit()
        transaction_id: int = transaction.id  # type: ignore[assignment]

        logger.info(
            f"[payment] initiating transaction_id={transaction_id} user_id={user_id} "
            f"package_id={package.id} amount={package.price} phone={mask_msisdn(msisdn)}"
        )

        try:
            push = await self.provider.push_payment(
                phone_number=msisdn,
                amount=package.price,
                reference=transaction.account_reference,
                description=f"{package.token_count} tokens",
            )
        except PaymentProviderError as e:
            await self._mark_failed(transaction_id, e)
            raise

        transaction.provider_reference = push.provider_reference
        transaction.merchant_request_id = push.merchant_request_id
        transaction.updated_at = utcnow()
        self.db.add(transaction)
        await self.db.commit()

        logger.info(
            f"[payment] STK push sent transaction_id={transaction_id} "
            f"checkout_request_id={push.provider_reference}"
        )

        if self.schedule_status_check:
            self._schedule_status_check(transaction_id)

        return PendingPayment(
            transaction_id=transaction_id,
            provider_reference=push.provider_reference,
            status=PaymentStatus.PENDING,
            message=push.customer_message
            or "Check your phone and enter your M-Pesa PIN to complete the payment",
        )

    async def _mark_failed(self, transaction_id: int, error: PaymentProviderError) -> None:
        """Move a still-pending transaction to failed after a push error."""
        await self.db.rollback()
        now = utcnow()
        result = await self.db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == transaction_id)
            .where(PaymentTransaction.status == PaymentStatus.PENDING)
            .values(
                status=PaymentStatus.FAILED,
                result_desc=error.message[:255],
                updated_at=now,
                completed_at=now,
            )
        )
        await self.db.commit()
        logger.warning(
            f"[payment] STK push failed transaction_id={transaction_id} "
            f"code={error.code} transitioned={result.rowcount == 1} error={error.message}"
        )

    @staticmethod
    def _schedule_status_check(transaction_id: int) -> None:
        """Queue a provider status query in case no callback arrives."""
        from src.tasks.payments import reconcile_transaction

        reconcile_transaction.apply_async(
            args=[transaction_id],
            countdown=get_settings().payment_status_check_delay_seconds,
            queue="payments",
        )

    # ============ Queries ============

    async def list_transactions(self, user_id: int, status: PaymentStatus | None = None):
        """Paginated purchase history of one user, newest first."""
        query = select(PaymentTransaction).where(PaymentTransaction.user_id == user_id)
        if status is not None:
            query = query.where(PaymentTransaction.status == status)
        query = query.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())

        return await apaginate(
            self.db,
            query,
            transformer=lambda items: [PaymentTransactionResponse.model_validate(t) for t in items],
        )

    async def get_transaction(self, user_id: int, transaction_id: int) -> PaymentTransaction:
        """Get one of the user's transactions.

        Raises:
            NotFoundError: Missing or owned by another user
        """
        transaction = await self.db.get(PaymentTransaction, transaction_id)
        if transaction is None or transaction.user_id != user_id:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction
