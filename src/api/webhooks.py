"""Webhook endpoints for M-Pesa result notifications.

Daraja posts the outcome of every STK push to the CallBackURL given at
initiation. The callback carries no signature; the URL includes a shared
token (`MPESA_CALLBACK_TOKEN`) that is checked here.

Daraja retries callbacks that are not acknowledged, so every recognized
request is answered with ResultCode 0, including duplicates and unknown
references.
"""

import hmac
import logging

from fastapi import APIRouter, HTTPException, Request, status

from src.api.deps import ReconcileSvc
from src.core.config import get_settings
from src.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

ACCEPTED = {"ResultCode": 0, "ResultDesc": "Accepted"}


def _check_callback_token(token: str | None) -> None:
    expected = get_settings().mpesa_callback_token
    if not expected:
        return
    if not token or not hmac.compare_digest(token, expected):
        logger.warning("[webhook] M-Pesa callback with invalid token rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid callback token")


@router.post("/mpesa/callback")
async def mpesa_callback(
    request: Request,
    service: ReconcileSvc,
    token: str | None = None,
):
    """Receive a Daraja stkCallback result."""
    _check_callback_token(token)

    try:
        body = await request.json()
    except ValueError:
        logger.warning("[webhook] M-Pesa callback with non-JSON body")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON") from None

    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    try:
        transaction = await service.handle_callback(body)
    except PaymentProviderError as e:
        logger.warning(f"[webhook] unrecognized M-Pesa callback: {e.message}")
        return {"ResultCode": 1, "ResultDesc": "Rejected"}

    if transaction is not None:
        logger.info(
            f"[webhook] M-Pesa callback processed transaction_id={transaction.id} "
            f"status={transaction.status.value}"
        )
    return ACCEPTED
