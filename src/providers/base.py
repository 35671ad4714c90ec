"""Payment provider interface abstraction."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from src.models.payment import PaymentStatus

# Daraja STK result codes with a dedicated meaning
RESULT_SUCCESS = 0
RESULT_CANCELLED_BY_USER = 1032
RESULT_USER_UNREACHABLE = 1037  # DS timeout, prompt never answered
RESULT_TRANSACTION_EXPIRED = 1019


def status_from_result_code(result_code: int) -> PaymentStatus:
    """Map a provider result code onto a terminal payment status."""
    if result_code == RESULT_SUCCESS:
        return PaymentStatus.COMPLETED
    if result_code == RESULT_CANCELLED_BY_USER:
        return PaymentStatus.CANCELLED
    if result_code in (RESULT_USER_UNREACHABLE, RESULT_TRANSACTION_EXPIRED):
        return PaymentStatus.TIMEOUT
    return PaymentStatus.FAILED


@dataclass
class PushResult:
    """Accepted push-payment request."""

    provider_reference: str  # CheckoutRequestID
    merchant_request_id: str | None = None
    customer_message: str | None = None


@dataclass
class ProviderStatus:
    """Provider's view of a push payment.

    status is PENDING while the customer has not answered the prompt.
    """

    provider_reference: str
    status: PaymentStatus
    message: str = ""
    result_code: int | None = None
    receipt: str | None = None
    amount: Decimal | None = None


class PaymentProvider(ABC):
    """Abstract interface for mobile-money push payments.

    Usage:
        provider = get_payment_provider()
        push = await provider.push_payment("254712345678", Decimal("100"), "TKN42", "Tokens")
        status = await provider.query_status(push.provider_reference)

    Every method raises PaymentProviderError on failure; its `code`
    separates transient network/auth problems from definitive rejections.
    """

    name: str = ""

    @abstractmethod
    async def push_payment(
        self,
        phone_number: str,
        amount: Decimal,
        reference: str,
        description: str,
    ) -> PushResult:
        """Send a payment prompt to the customer's phone.

        Args:
            phone_number: Canonical MSISDN
            amount: Amount to charge
            reference: Account reference shown to the customer
            description: Short transaction description

        Returns:
            PushResult with the provider correlation id
        """
        pass

    @abstractmethod
    async def query_status(self, provider_reference: str) -> ProviderStatus:
        """Ask the provider for the current state of a push payment.

        Args:
            provider_reference: Correlation id returned by push_payment

        Returns:
            ProviderStatus (PENDING while still processing)
        """
        pass

    @abstractmethod
    def parse_callback(self, payload: dict[str, Any]) -> ProviderStatus:
        """Parse an asynchronous result notification.

        Args:
            payload: Decoded JSON body posted by the provider

        Returns:
            ProviderStatus carrying a terminal status

        Raises:
            PaymentProviderError: Payload is not a recognizable result
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
