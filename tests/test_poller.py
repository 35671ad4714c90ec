"""Client poller: interval, budget, transient errors and cancel."""

import asyncio
from dataclasses import dataclass

import httpx
import pytest

from src.clients.poller import PaymentStatusPoller
from src.core.exceptions import PaymentProviderError
from src.models.payment import PaymentStatus


@dataclass
class Status:
    status: PaymentStatus
    message: str = ""
    mpesa_receipt: str | None = None


class ScriptedSource:
    """Returns queued responses, repeating the last one."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    async def __call__(self, reference: str):
        self.calls += 1
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


async def test_stops_on_terminal_status():
    source = ScriptedSource(
        Status(PaymentStatus.PENDING),
        Status(PaymentStatus.PENDING),
        Status(PaymentStatus.COMPLETED, "Paid", "ABC123"),
    )
    outcome = await PaymentStatusPoller(source, interval=0.01, timeout=5).poll("ws_CO_1")

    assert outcome.status == PaymentStatus.COMPLETED
    assert outcome.receipt == "ABC123"
    assert outcome.timed_out is False
    assert source.calls == 3
    assert outcome.attempts == 3


async def test_transient_errors_keep_polling():
    source = ScriptedSource(
        PaymentProviderError("gateway down"),
        httpx.ConnectError("offline"),
        Status(PaymentStatus.CANCELLED, "Request cancelled by user"),
    )
    outcome = await PaymentStatusPoller(source, interval=0.01, timeout=5).poll("ws_CO_1")

    assert outcome.status == PaymentStatus.CANCELLED
    assert source.calls == 3


async def test_times_out_with_final_repoll():
    source = ScriptedSource(Status(PaymentStatus.PENDING))
    outcome = await PaymentStatusPoller(source, interval=0.02, timeout=0.1).poll("ws_CO_1")

    assert outcome.timed_out is True
    assert outcome.status == PaymentStatus.TIMEOUT
    assert "credited" in outcome.message
    assert source.calls == outcome.attempts
    assert source.calls >= 3


async def test_final_repoll_catches_late_completion():
    class LateSource:
        calls = 0

        async def __call__(self, reference):
            self.calls += 1
            await asyncio.sleep(0)
            return Status(PaymentStatus.COMPLETED if self.calls >= 3 else PaymentStatus.PENDING)

    source = LateSource()
    # One wait fills the whole budget: query, wait, query, then the re-poll
    outcome = await PaymentStatusPoller(source, interval=1.0, timeout=0.05).poll("ws_CO_1")

    assert outcome.status == PaymentStatus.COMPLETED
    assert outcome.timed_out is False
    assert source.calls == 3


async def test_cancel_stops_polling():
    source = ScriptedSource(Status(PaymentStatus.PENDING))
    poller = PaymentStatusPoller(source, interval=10, timeout=60)

    task = asyncio.create_task(poller.poll("ws_CO_1"))
    await asyncio.sleep(0.05)
    poller.cancel()
    outcome = await asyncio.wait_for(task, timeout=2)

    assert outcome.cancelled is True
    assert outcome.status == PaymentStatus.PENDING
    assert source.calls == 1


async def test_accepts_string_statuses():
    source = ScriptedSource(Status("failed", "Insufficient funds"))
    outcome = await PaymentStatusPoller(source, interval=0.01, timeout=1).poll("ws_CO_1")
    assert outcome.status == PaymentStatus.FAILED


def test_rejects_bad_configuration():
    with pytest.raises(ValueError):
        PaymentStatusPoller(ScriptedSource(), interval=0, timeout=10)
