"""Payment provider factory.

Provides the configured mobile-money provider as a cached singleton.
"""

import logging
from functools import lru_cache

from src.core.config import get_settings
from src.providers.base import PaymentProvider, ProviderStatus, PushResult

logger = logging.getLogger(__name__)

__all__ = [
    "PaymentProvider",
    "ProviderStatus",
    "PushResult",
    "close_payment_provider",
    "get_payment_provider",
]


@lru_cache(maxsize=1)
def get_payment_provider() -> PaymentProvider:
    """Get the payment provider selected in settings.

    Raises:
        ValueError: If the provider is not supported
    """
    provider_name = get_settings().payment_provider
    if provider_name == "mpesa":
        from src.providers.mpesa import MpesaProvider

        return MpesaProvider()
    raise ValueError(f"Unsupported payment provider: {provider_name}")


async def close_payment_provider() -> None:
    """Close the cached provider's HTTP client."""
    if get_payment_provider.cache_info().currsize:
        await get_payment_provider().close()
        get_payment_provider.cache_clear()
        logger.info("Payment provider client closed")
