"""M-Pesa (Safaricom Daraja) payment provider.

Implements Lipa Na M-Pesa Online (STK Push):
- OAuth client-credentials token, cached until shortly before expiry
- STK push request (/mpesa/stkpush/v1/processrequest)
- STK status query (/mpesa/stkpushquery/v1/query)
- Parsing of the stkCallback result notification
"""

import asyncio
import base64
import logging
import time
from datetime import datetime
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any
from zoneinfo import ZoneInfo

import httpx

from src.core.config import Settings, get_settings
from src.core.exceptions import PaymentProviderError
from src.models.payment import PaymentStatus
from src.providers.base import (
    PaymentProvider,
    ProviderStatus,
    PushResult,
    status_from_result_code,
)
from src.utils.phone import mask_msisdn

logger = logging.getLogger(__name__)

NAIROBI = ZoneInfo("Africa/Nairobi")

# Query answered while the customer has not acted on the prompt yet
STILL_PROCESSING_ERROR_CODE = "500.001.1001"


class MpesaProvider(PaymentProvider):
    """Daraja STK Push client built on httpx.AsyncClient."""

    name = "mpesa"

    TOKEN_PATH = "/oauth/v1/generate"
    STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
    STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"
    TRANSACTION_TYPE = "CustomerPayBillOnline"
    TOKEN_REFRESH_MARGIN_SECONDS = 60

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.mpesa_base_url,
            timeout=self._settings.mpesa_timeout_seconds,
        )
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    async def close(self) -> None:
        await self._client.aclose()

    # ============ Auth ============

    async def _get_access_token(self) -> str:
        """Return a cached OAuth token, fetching a new one when close to expiry."""
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            try:
                response = await self._client.get(
                    self.TOKEN_PATH,
                    params={"grant_type": "client_credentials"},
                    auth=(self._settings.mpesa_consumer_key, self._settings.mpesa_consumer_secret),
                )
            except httpx.TimeoutException as e:
                raise PaymentProviderError("M-Pesa auth request timed out", code="timeout") from e
            except httpx.RequestError as e:
                raise PaymentProviderError(f"M-Pesa auth request failed: {e}") from e

            if response.status_code != 200:
                raise PaymentProviderError(
                    f"M-Pesa auth rejected: HTTP {response.status_code}",
                    code="auth_error",
                )

            data = self._json(response)
            token = data.get("access_token")
            if not token:
                raise PaymentProviderError(
                    "M-Pesa auth response has no access_token", code="invalid_response"
                )

            expires_in = int(data.get("expires_in", 3599))
            self._access_token = token
            self._token_expires_at = (
                time.monotonic() + expires_in - self.TOKEN_REFRESH_MARGIN_SECONDS
            )
            return token

    def _password(self, timestamp: str) -> str:
        raw = f"{self._settings.mpesa_shortcode}{self._settings.mpesa_passkey}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(NAIROBI).strftime("%Y%m%d%H%M%S")

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise PaymentProviderError(
                f"M-Pesa returned non-JSON body (HTTP {response.status_code})",
                code="invalid_response",
            ) from e
        if not isinstance(data, dict):
            raise PaymentProviderError("M-Pesa returned unexpected body", code="invalid_response")
        return data

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        token = await self._get_access_token()
        try:
            response = await self._client.post(
                path,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise PaymentProviderError("M-Pesa request timed out", code="timeout") from e
        except httpx.RequestError as e:
            raise PaymentProviderError(f"M-Pesa request failed: {e}") from e

        if response.status_code in (401, 403):
            # Token revoked or expired early; next call fetches a fresh one
            self._access_token = None
            raise PaymentProviderError(
                f"M-Pesa rejected credentials: HTTP {response.status_code}", code="auth_error"
            )
        return response

    # ============ STK Push ============

    async def push_payment(
        self,
        phone_number: str,
        amount: Decimal,
        reference: str,
        description: str,
    ) -> PushResult:
        timestamp = self._timestamp()
        shortcode = self._settings.mpesa_shortcode
        payload = {
            "BusinessShortCode": shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.TRANSACTION_TYPE,
            # Daraja only accepts whole shillings
            "Amount": int(amount.to_integral_value(rounding=ROUND_CEILING)),
            "PartyA": phone_number,
            "PartyB": shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self._callback_url(),
            "AccountReference": reference[:12],
            "TransactionDesc": description[:13],
        }

        response = await self._post(self.STK_PUSH_PATH, payload)
        if response.status_code >= 500:
            raise PaymentProviderError(
                f"M-Pesa STK push failed: HTTP {response.status_code}", code="network_error"
            )
        data = self._json(response)

        if response.status_code != 200 or str(data.get("ResponseCode")) != "0":
            message = (
                data.get("errorMessage")
                or data.get("ResponseDescription")
                or f"HTTP {response.status_code}"
            )
            logger.warning(
                f"[mpesa] STK push rejected phone={mask_msisdn(phone_number)} "
                f"reference={reference} error={message}"
            )
            raise PaymentProviderError(
                f"M-Pesa rejected the payment request: {message}",
                code="rejected",
                details={"error_code": data.get("errorCode") or data.get("ResponseCode")},
            )

        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise PaymentProviderError(
                "M-Pesa response has no CheckoutRequestID", code="invalid_response"
            )

        logger.info(
            f"[mpesa] STK push accepted phone={mask_msisdn(phone_number)} "
            f"reference={reference} checkout_request_id={checkout_request_id}"
        )
        return PushResult(
            provider_reference=checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            customer_message=data.get("CustomerMessage"),
        )

    def _callback_url(self) -> str:
        url = self._settings.mpesa_callback_url
        token = self._settings.mpesa_callback_token
        if token:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}token={token}"
        return url

    # ============ STK Query ============

    async def query_status(self, provider_reference: str) -> ProviderStatus:
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self._settings.mpesa_shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": provider_reference,
        }

        response = await self._post(self.STK_QUERY_PATH, payload)
        data = self._json(response)

        error_code = data.get("errorCode")
        if error_code == STILL_PROCESSING_ERROR_CODE:
            return ProviderStatus(
                provider_reference=provider_reference,
                status=PaymentStatus.PENDING,
                message=data.get("errorMessage", "The transaction is being processed"),
            )
        if response.status_code >= 500:
            raise PaymentProviderError(
                f"M-Pesa status query failed: HTTP {response.status_code}",
                code="network_error",
            )
        if response.status_code != 200 or error_code:
            raise PaymentProviderError(
                f"M-Pesa status query rejected: {data.get('errorMessage', response.status_code)}",
                code="rejected",
                details={"error_code": error_code},
            )

        if "ResultCode" not in data:
            return ProviderStatus(
                provider_reference=provider_reference,
                status=PaymentStatus.PENDING,
                message=data.get("ResponseDescription", ""),
            )

        result_code = int(data["ResultCode"])
        return ProviderStatus(
            provider_reference=provider_reference,
            status=status_from_result_code(result_code),
            message=data.get("ResultDesc", ""),
            result_code=result_code,
        )

    # ============ Callback ============

    def parse_callback(self, payload: dict[str, Any]) -> ProviderStatus:
        body = payload.get("Body") if isinstance(payload, dict) else None
        callback = body.get("stkCallback") if isinstance(body, dict) else None
        if not isinstance(callback, dict) or not callback.get("CheckoutRequestID"):
            raise PaymentProviderError("Not an STK callback payload", code="invalid_response")

        try:
            result_code = int(callback.get("ResultCode"))
        except (TypeError, ValueError) as e:
            raise PaymentProviderError(
                "STK callback has no valid ResultCode", code="invalid_response"
            ) from e

        callback_metadata = callback.get("CallbackMetadata") or {}
        items = callback_metadata.get("Item") if isinstance(callback_metadata, dict) else None
        if not isinstance(items, list):
            items = []
        metadata = {
            item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)
        }

        amount = metadata.get("Amount")
        if amount is not None:
            try:
                amount = Decimal(str(amount))
            except InvalidOperation as e:
                raise PaymentProviderError(
                    f"STK callback has an invalid Amount: {amount!r}", code="invalid_response"
                ) from e

        return ProviderStatus(
            provider_reference=callback["CheckoutRequestID"],
            status=status_from_result_code(result_code),
            message=callback.get("ResultDesc", ""),
            result_code=result_code,
            receipt=metadata.get("MpesaReceiptNumber"),
            amount=amount,
        )
