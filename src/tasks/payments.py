"""Payment reconciliation tasks.

- reconcile_transaction: one status query, scheduled after each STK push
  in case the Daraja callback never arrives
- reconcile_stale: periodic sweep over old pending purchases (Celery beat)
"""

import asyncio
import logging
import time

from src.core.exceptions import PaymentProviderError
from src.db.engine import close_db, get_session
from src.providers.mpesa import MpesaProvider
from src.services.reconcile_service import ReconcileService
from src.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_async(coro):
    """Run async coroutine in sync context for Celery."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(
    name="payments.reconcile_transaction",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
)
def reconcile_transaction(self, transaction_id: int) -> dict:
    """Query M-Pesa once for a pending purchase.

    Transient provider errors are retried; the periodic sweep picks up
    anything still unresolved afterwards.

    Args:
        transaction_id: PaymentTransaction ID
    """
    result = run_async(_reconcile_transaction_async(transaction_id))
    if result.get("retry"):
        raise self.retry()
    return result


async def _reconcile_transaction_async(transaction_id: int) -> dict:
    """Async implementation of reconcile_transaction."""
    start_time = time.time()
    logger.info(f"[reconcile_transaction] start transaction_id={transaction_id}")

    # Fresh client per run; each task gets its own event loop
    provider = MpesaProvider()
    try:
        async with get_session() as db:
            service = ReconcileService(db, provider=provider)
            transaction = await service.reconcile_transaction(transaction_id)

        elapsed = time.time() - start_time
        if transaction is None:
            logger.warning(f"[reconcile_transaction] not found transaction_id={transaction_id}")
            return {"success": False, "message": "Transaction not found"}

        logger.info(
            f"[reconcile_transaction] done transaction_id={transaction_id} "
            f"status={transaction.status.value} elapsed={elapsed:.3f}s"
        )
        return {"success": True, "status": transaction.status.value}

    except PaymentProviderError as e:
        elapsed = time.time() - start_time
        logger.warning(
            f"[reconcile_transaction] provider error transaction_id={transaction_id} "
            f"code={e.code} elapsed={elapsed:.3f}s error={e.message}"
        )
        return {"success": False, "error": e.message, "retry": e.transient}
    finally:
        await provider.close()
        await close_db()


@celery_app.task(name="payments.reconcile_stale")
def reconcile_stale() -> dict:
    """Settle pending purchases that neither polling nor callback resolved."""
    return run_async(_reconcile_stale_async())


async def _reconcile_stale_async() -> dict:
    """Async implementation of reconcile_stale."""
    start_time = time.time()
    provider = MpesaProvider()
    try:
        async with get_session() as db:
            stats = await ReconcileService(db, provider=provider).reconcile_stale()

        elapsed = time.time() - start_time
        if stats["checked"]:
            logger.info(f"[reconcile_stale] {stats} elapsed={elapsed:.3f}s")
        return {"success": True, **stats}

    except Exception as e:
        elapsed = time.time() - start_time
        logger.exception(f"[reconcile_stale] sweep failed elapsed={elapsed:.3f}s error={e}")
        return {"success": False, "error": str(e)}
    finally:
        await provider.close()
        await close_db()
