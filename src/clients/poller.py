"""Client-side payment status polling.

After an STK push the buyer's app polls the status endpoint until the
purchase reaches a terminal state. Giving up locally (timeout or cancel)
never changes the transaction on the server: a payment completed after the
client stopped watching is still credited by the callback or the
reconciliation sweep.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from src.core.exceptions import PaymentProviderError
from src.models.payment import PaymentStatus

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_POLL_TIMEOUT = 120.0

TIMEOUT_MESSAGE = (
    "Payment confirmation is taking longer than expected. "
    "If you completed the payment, your tokens will be credited shortly."
)


@dataclass
class PollOutcome:
    """Result of one polling session."""

    status: PaymentStatus
    message: str = ""
    receipt: str | None = None
    timed_out: bool = False
    cancelled: bool = False
    attempts: int = 0


class PaymentStatusPoller:
    """Polls a status source until a terminal status, a timeout or cancel().

    Args:
        fetch_status: Coroutine function taking the checkout reference and
            returning an object with `status`, `message` and `mpesa_receipt`
        interval: Seconds between queries
        timeout: Total budget in seconds
    """

    def __init__(
        self,
        fetch_status: Callable[[str], Awaitable[Any]],
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
    ):
        if interval <= 0 or timeout <= 0:
            raise ValueError("interval and timeout must be positive")
        self.fetch_status = fetch_status
        self.interval = interval
        self.timeout = timeout
        self._cancelled = asyncio.Event()

    def cancel(self) -> None:
        """Stop polling at the next opportunity. Does not touch the payment."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    async def _query(self, reference: str) -> Any | None:
        try:
            return await self.fetch_status(reference)
        except (PaymentProviderError, httpx.HTTPError) as e:
            logger.warning(f"[poller] status query failed reference={reference}: {e}")
            return None

    @staticmethod
    def _outcome(result: Any, attempts: int) -> PollOutcome:
        return PollOutcome(
            status=PaymentStatus(result.status),
            message=result.message or "",
            receipt=getattr(result, "mpesa_receipt", None),
            attempts=attempts,
        )

    async def _wait(self, seconds: float) -> None:
        """Sleep, waking early on cancel()."""
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def poll(self, reference: str) -> PollOutcome:
        """Poll until the payment settles or the budget runs out.

        Returns:
            PollOutcome; timed_out/cancelled mark a local give-up while the
            server still has the payment pending
        """
        deadline = time.monotonic() + self.timeout
        attempts = 0

        while not self.cancelled:
            attempts += 1
            result = await self._query(reference)
            if result is not None and PaymentStatus(result.status).is_terminal:
                logger.info(f"[poller] reference={reference} settled as {result.status}")
                return self._outcome(result, attempts)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await self._wait(min(self.interval, remaining))

        if self.cancelled:
            logger.info(f"[poller] cancelled reference={reference} after {attempts} queries")
            return PollOutcome(
                status=PaymentStatus.PENDING,
                message="Stopped waiting for payment confirmation",
                cancelled=True,
                attempts=attempts,
            )

        # One last look before reporting a timeout
        attempts += 1
        result = await self._query(reference)
        if result is not None and PaymentStatus(result.status).is_terminal:
            return self._outcome(result, attempts)

        logger.info(f"[poller] gave up reference={reference} after {attempts} queries")
        return PollOutcome(
            status=PaymentStatus.TIMEOUT,
            message=TIMEOUT_MESSAGE,
            timed_out=True,
            attempts=attempts,
        )
