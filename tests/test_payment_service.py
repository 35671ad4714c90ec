"""Payment initiator: pending row first, then the STK push."""

from decimal import Decimal

import pytest
from sqlmodel import select

from src.core.exceptions import InvalidPhoneNumberError, NotFoundError, PaymentProviderError
from src.models.payment import PaymentStatus, PaymentTransaction
from src.services.payment_service import PaymentService


def _service(db, provider) -> PaymentService:
    return PaymentService(db, provider=provider, schedule_status_check=False)


async def test_initiate_creates_pending_transaction(db, user, package, provider):
    pending = await _service(db, provider).initiate(user.id, package.id, "0712345678")

    assert pending.status == PaymentStatus.PENDING
    assert pending.provider_reference == "ws_CO_000001"

    tx = await db.get(PaymentTransaction, pending.transaction_id)
    assert tx.status == PaymentStatus.PENDING
    assert tx.phone_number == "254712345678"
    assert tx.provider_reference == "ws_CO_000001"
    assert tx.merchant_request_id == "mr-1"
    assert tx.amount == Decimal("100.00")
    assert tx.tokens_purchased == 10
    assert tx.package_name == "Starter"

    push = provider.pushes[0]
    assert push["phone_number"] == "254712345678"
    assert push["amount"] == Decimal("100.00")
    assert push["reference"] == f"TKN{tx.id}"


async def test_snapshot_survives_package_edit(db, user, package, provider):
    pending = await _service(db, provider).initiate(user.id, package.id, "0712345678")

    package.price = Decimal("150.00")
    package.token_count = 20
    db.add(package)
    await db.commit()

    tx = await db.get(PaymentTransaction, pending.transaction_id, populate_existing=True)
    assert tx.amount == Decimal("100.00")
    assert tx.tokens_purchased == 10


async def test_invalid_phone_creates_nothing(db, user, package, provider):
    with pytest.raises(InvalidPhoneNumberError):
        await _service(db, provider).initiate(user.id, package.id, "12345")

    assert (await db.execute(select(PaymentTransaction))).scalars().all() == []
    assert provider.pushes == []


async def test_inactive_package_rejected(db, user, inactive_package, provider):
    with pytest.raises(NotFoundError):
        await _service(db, provider).initiate(user.id, inactive_package.id, "0712345678")
    assert provider.pushes == []


async def test_push_failure_marks_transaction_failed(db, user, package, provider):
    provider.push_error = PaymentProviderError("M-Pesa request timed out", code="timeout")

    with pytest.raises(PaymentProviderError) as exc_info:
        await _service(db, provider).initiate(user.id, package.id, "0712345678")
    assert exc_info.value.transient is True

    tx = (await db.execute(select(PaymentTransaction))).scalar_one()
    assert tx.status == PaymentStatus.FAILED
    assert tx.completed_at is not None
    assert tx.provider_reference is None


async def test_list_and_get_transactions_are_owner_scoped(db, user, other_user, package, provider):
    service = _service(db, provider)
    mine = await service.initiate(user.id, package.id, "0712345678")
    theirs = await service.initiate(other_user.id, package.id, "0722000000")

    found = await service.get_transaction(user.id, mine.transaction_id)
    assert found.id == mine.transaction_id

    with pytest.raises(NotFoundError):
        await service.get_transaction(user.id, theirs.transaction_id)
