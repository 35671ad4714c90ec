"""Ledger store: balances, idempotent credits, guarded debits, history."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from src.core.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from src.models.ledger import LedgerEntry, LedgerReason, TokenAccount
from src.models.payment import PaymentTransaction
from src.services.ledger_service import LedgerService
from tests.conftest import balance_of, fund


async def _transaction(db, user, package) -> PaymentTransaction:
    tx = PaymentTransaction(
        user_id=user.id,
        package_id=package.id,
        package_name=package.name,
        amount=Decimal("100.00"),
        tokens_purchased=10,
        phone_number="254712345678",
    )
    db.add(tx)
    await db.commit()
    await db.refresh(tx)
    await db.commit()
    return tx


async def test_balance_is_zero_without_account(db, user):
    assert await LedgerService(db).get_balance(user.id) == 0


async def test_credit_then_debit(db, user):
    ledger = LedgerService(db)

    assert await ledger.credit(user.id, 10, LedgerReason.REWARD) == 10
    assert await ledger.debit(user.id, 3, LedgerReason.SEARCH_DEBIT) == 7
    assert await ledger.get_balance(user.id) == 7

    entries = (await db.execute(select(LedgerEntry).order_by(LedgerEntry.id))).scalars().all()
    assert [e.delta for e in entries] == [10, -3]
    assert [e.balance_after for e in entries] == [10, 7]


async def test_debit_refused_writes_nothing(db, user):
    user_id = user.id
    ledger = LedgerService(db)
    await ledger.credit(user_id, 1, LedgerReason.REWARD)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await ledger.debit(user_id, 2, LedgerReason.CONTACT_DEBIT)

    assert exc_info.value.required == 2
    assert exc_info.value.available == 1
    assert await ledger.get_balance(user_id) == 1
    count = len((await db.execute(select(LedgerEntry))).scalars().all())
    assert count == 1


async def test_debit_without_account_reports_zero_available(db, user):
    with pytest.raises(InsufficientBalanceError) as exc_info:
        await LedgerService(db).debit(user.id, 1, LedgerReason.SEARCH_DEBIT)
    assert exc_info.value.available == 0


@pytest.mark.parametrize("amount", [0, -5])
async def test_non_positive_amounts_rejected(db, user, amount):
    ledger = LedgerService(db)
    with pytest.raises(ValidationError):
        await ledger.credit(user.id, amount, LedgerReason.REWARD)
    with pytest.raises(ValidationError):
        await ledger.debit(user.id, amount, LedgerReason.SEARCH_DEBIT)


async def test_reason_direction_enforced(db, user):
    ledger = LedgerService(db)
    with pytest.raises(ValidationError):
        await ledger.credit(user.id, 5, LedgerReason.SEARCH_DEBIT)
    with pytest.raises(ValidationError):
        await ledger.debit(user.id, 5, LedgerReason.PURCHASE)


async def test_duplicate_credit_for_transaction_applies_once(db, user, package):
    tx = await _transaction(db, user, package)
    user_id, tx_id = user.id, tx.id
    ledger = LedgerService(db)

    first = await ledger.credit(user_id, 10, LedgerReason.PURCHASE, related_transaction_id=tx_id)
    second = await ledger.credit(user_id, 10, LedgerReason.PURCHASE, related_transaction_id=tx_id)

    assert first == second == 10
    entries = (
        await db.execute(select(LedgerEntry).where(LedgerEntry.related_transaction_id == tx_id))
    ).scalars().all()
    assert len(entries) == 1


async def test_unique_constraint_backstops_duplicate_credit(db, user, package):
    tx = await _transaction(db, user, package)
    db.add(
        LedgerEntry(
            user_id=user.id,
            delta=10,
            reason=LedgerReason.PURCHASE,
            balance_after=10,
            related_transaction_id=tx.id,
        )
    )
    await db.commit()

    db.add(
        LedgerEntry(
            user_id=user.id,
            delta=10,
            reason=LedgerReason.PURCHASE,
            balance_after=20,
            related_transaction_id=tx.id,
        )
    )
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()


async def test_concurrent_duplicate_credits_apply_once(session_factory, db, user, package):
    tx = await _transaction(db, user, package)

    async def credit_once():
        async with session_factory() as session:
            return await LedgerService(session).credit(
                user.id, 10, LedgerReason.PURCHASE, related_transaction_id=tx.id
            )

    results = await asyncio.gather(*(credit_once() for _ in range(5)))

    assert all(r == 10 for r in results)
    assert await balance_of(session_factory, user.id) == 10


async def test_concurrent_debits_and_credits_keep_invariants(session_factory, user):
    await fund(session_factory, user.id, 5)

    async def debit():
        async with session_factory() as session:
            try:
                await LedgerService(session).debit(user.id, 1, LedgerReason.SEARCH_DEBIT)
                return True
            except InsufficientBalanceError:
                return False

    async def credit():
        async with session_factory() as session:
            await LedgerService(session).credit(user.id, 2, LedgerReason.REWARD)

    outcomes = await asyncio.gather(*([debit() for _ in range(12)] + [credit() for _ in range(3)]))
    successful_debits = sum(1 for o in outcomes if o is True)

    async with session_factory() as session:
        audit = await LedgerService(session).audit(user.id)
        await session.commit()

    assert audit["consistent"]
    assert audit["cached_balance"] == 5 + 3 * 2 - successful_debits
    assert audit["cached_balance"] >= 0


async def test_balance_check_constraint(db, user):
    await LedgerService(db).credit(user.id, 1, LedgerReason.REWARD)
    account = await db.get(TokenAccount, user.id)
    account.balance = -1
    db.add(account)
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()


async def test_reverse_debit_is_idempotent(db, user):
    ledger = LedgerService(db)
    await ledger.credit(user.id, 5, LedgerReason.REWARD)
    await ledger.debit(user.id, 2, LedgerReason.CONTACT_DEBIT)
    debit = (
        await db.execute(select(LedgerEntry).where(LedgerEntry.delta < 0))
    ).scalar_one()
    await db.commit()

    first = await ledger.reverse_debit(debit.id)
    second = await ledger.reverse_debit(debit.id)

    assert first.id == second.id
    assert first.reason == LedgerReason.REVERSAL
    assert first.delta == 2
    assert first.reversed_entry_id == debit.id
    assert await ledger.get_balance(user.id) == 5


async def test_reverse_debit_rejects_credits_and_missing(db, user):
    ledger = LedgerService(db)
    await ledger.credit(user.id, 5, LedgerReason.REWARD)
    credit = (await db.execute(select(LedgerEntry))).scalar_one()
    await db.commit()

    with pytest.raises(ValidationError):
        await ledger.reverse_debit(credit.id)
    with pytest.raises(NotFoundError):
        await ledger.reverse_debit(9999)


async def test_history_pages_newest_first(db, user):
    ledger = LedgerService(db)
    for _ in range(5):
        await ledger.credit(user.id, 1, LedgerReason.REWARD)

    page1, cursor = await ledger.history(user.id, limit=2)
    page2, cursor2 = await ledger.history(user.id, cursor=cursor, limit=2)
    page3, cursor3 = await ledger.history(user.id, cursor=cursor2, limit=2)

    assert [e.balance_after for e in page1] == [5, 4]
    assert [e.balance_after for e in page2] == [3, 2]
    assert [e.balance_after for e in page3] == [1]
    assert cursor3 is None


async def test_history_exact_page_has_no_next_cursor(db, user):
    ledger = LedgerService(db)
    for _ in range(2):
        await ledger.credit(user.id, 1, LedgerReason.REWARD)

    entries, cursor = await ledger.history(user.id, limit=2)
    assert len(entries) == 2
    assert cursor is None


async def test_history_is_scoped_to_user(db, user, other_user):
    ledger = LedgerService(db)
    await ledger.credit(user.id, 1, LedgerReason.REWARD)
    await ledger.credit(other_user.id, 1, LedgerReason.REWARD)

    entries, _ = await ledger.history(user.id)
    assert {e.user_id for e in entries} == {user.id}


async def test_iter_history_walks_everything(db, user):
    ledger = LedgerService(db)
    for _ in range(7):
        await ledger.credit(user.id, 1, LedgerReason.REWARD)

    seen = [entry.balance_after async for entry in ledger.iter_history(user.id, page_size=3)]
    assert seen == [7, 6, 5, 4, 3, 2, 1]


async def test_audit_detects_drift(db, user):
    ledger = LedgerService(db)
    await ledger.credit(user.id, 4, LedgerReason.REWARD)

    account = await db.get(TokenAccount, user.id)
    account.balance = 9
    db.add(account)
    await db.commit()

    audit = await ledger.audit(user.id)
    assert audit == {
        "user_id": user.id,
        "cached_balance": 9,
        "replayed_balance": 4,
        "entry_count": 1,
        "consistent": False,
    }
