"""API client and payment status poller for token service consumers."""

from src.clients.api_client import TokenServiceClient
from src.clients.poller import PaymentStatusPoller, PollOutcome

__all__ = [
    "PaymentStatusPoller",
    "PollOutcome",
    "TokenServiceClient",
]
