"""HTTP client for the token service API.

Usage:
    async with TokenServiceClient("https://api.example.com", token=session_jwt) as client:
        packages = await client.list_packages()
        pending = await client.purchase(packages[0].id, "0712345678")
        outcome = await client.wait_for_payment(pending.checkout_request_id)
"""

from typing import Any

import httpx

from src.clients.poller import DEFAULT_POLL_INTERVAL, DEFAULT_POLL_TIMEOUT, PaymentStatusPoller, PollOutcome
from src.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InsufficientBalanceError,
    NotFoundError,
    PaymentProviderError,
    ValidationError,
)
from src.schemas.ledger import AuthorizeResponse, LedgerHistoryResponse
from src.schemas.payment import InitiatePaymentResponse, PaymentStatusResponse
from src.schemas.token_package import TokenPackageResponse


class TokenServiceClient:
    """Async client for the /api/v1 token endpoints."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "TokenServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _detail(response: httpx.Response) -> Any:
        try:
            return response.json().get("detail")
        except ValueError:
            return response.text

    def _raise_for_error(self, response: httpx.Response) -> None:
        """Map error responses back onto service exceptions."""
        if response.is_success:
            return
        detail = self._detail(response)
        message = detail.get("message", "") if isinstance(detail, dict) else str(detail or "")

        if response.status_code == 402 and isinstance(detail, dict):
            raise InsufficientBalanceError(
                required=detail["required"], available=detail["available"], message=message
            )
        if response.status_code == 502 and isinstance(detail, dict):
            raise PaymentProviderError(message, code=detail.get("code", "network_error"))
        if response.status_code == 401:
            raise AuthenticationError(message or "Not authenticated")
        if response.status_code == 403:
            raise AuthorizationError(message or "Forbidden")
        if response.status_code == 404:
            raise NotFoundError(message or "Not found")
        if response.status_code in (400, 422):
            raise ValidationError(message or "Invalid request", {"detail": detail})
        response.raise_for_status()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._client.request(method, path, **kwargs)
        self._raise_for_error(response)
        return response.json()

    # ============ Tokens ============

    async def get_balance(self) -> int:
        return (await self._request("GET", "/tokens/balance"))["balance"]

    async def list_packages(self) -> list[TokenPackageResponse]:
        data = await self._request("GET", "/tokens/packages")
        return [TokenPackageResponse.model_validate(p) for p in data]

    async def get_costs(self) -> dict[str, int]:
        return (await self._request("GET", "/tokens/costs"))["costs"]

    async def authorize(self, action: str) -> AuthorizeResponse:
        """Debit the cost of a metered action.

        Raises:
            InsufficientBalanceError: Balance too low
        """
        data = await self._request("POST", "/tokens/authorize", json={"action": action})
        return AuthorizeResponse.model_validate(data)

    async def history(self, cursor: int | None = None, limit: int = 20) -> LedgerHistoryResponse:
        params: dict[str, int] = {"limit": limit}
        if cursor is not None:
            params["cursor"] = cursor
        data = await self._request("GET", "/tokens/history", params=params)
        return LedgerHistoryResponse.model_validate(data)

    # ============ Payments ============

    async def purchase(self, package_id: int, phone_number: str) -> InitiatePaymentResponse:
        data = await self._request(
            "POST",
            "/payments/mpesa/initiate",
            json={"package_id": package_id, "phone_number": phone_number},
        )
        return InitiatePaymentResponse.model_validate(data)

    async def get_payment_status(self, checkout_request_id: str) -> PaymentStatusResponse:
        data = await self._request("GET", f"/payments/mpesa/status/{checkout_request_id}")
        return PaymentStatusResponse.model_validate(data)

    def poller(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> PaymentStatusPoller:
        """A poller bound to this client's status endpoint."""
        return PaymentStatusPoller(self.get_payment_status, interval=interval, timeout=timeout)

    async def wait_for_payment(
        self,
        checkout_request_id: str,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> PollOutcome:
        """Poll a purchase until it settles or the budget runs out."""
        return await self.poller(interval=interval, timeout=timeout).poll(checkout_request_id)
