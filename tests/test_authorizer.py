"""Action authorizer: metered debits, refusals and compensation."""

import asyncio
import logging

import pytest
from sqlmodel import select

from src.core.config import DEFAULT_ACTION_COSTS, Settings
from src.core.exceptions import AuthorizationError, InsufficientBalanceError, UnknownActionError
from src.models.ledger import LedgerEntry, LedgerReason, MeteredAction
from src.services.authorizer_service import ActionAuthorizer
from src.services.ledger_service import LedgerService
from tests.conftest import balance_of, fund


async def test_default_costs():
    assert DEFAULT_ACTION_COSTS == {MeteredAction.SEARCH: 1, MeteredAction.CONTACT: 2}


async def test_authorize_debits_cost(db, session_factory, user):
    await fund(session_factory, user.id, 5)
    authorizer = ActionAuthorizer(db)

    result = await authorizer.authorize(user.id, "contact")

    assert result.authorized is True
    assert result.action == MeteredAction.CONTACT
    assert result.cost == 2
    assert result.remaining_balance == 3

    entry = await db.get(LedgerEntry, result.entry_id)
    assert entry.reason == LedgerReason.CONTACT_DEBIT
    assert entry.delta == -2


async def test_metered_debit_scenario(db, session_factory, user):
    """Balance 3, three searches succeed, the fourth is refused."""
    await fund(session_factory, user.id, 3)
    authorizer = ActionAuthorizer(db)

    remaining = [(await authorizer.authorize(user.id, "search")).remaining_balance for _ in range(3)]
    assert remaining == [2, 1, 0]

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await authorizer.authorize(user.id, "search")
    assert exc_info.value.required == 1
    assert exc_info.value.available == 0

    entries = (
        await db.execute(select(LedgerEntry).where(LedgerEntry.reason == LedgerReason.SEARCH_DEBIT))
    ).scalars().all()
    assert len(entries) == 3


async def test_unknown_action_raises_and_logs(db, user, caplog):
    authorizer = ActionAuthorizer(db)
    with caplog.at_level(logging.ERROR):
        with pytest.raises(UnknownActionError):
            await authorizer.authorize(user.id, "teleport")
    assert "teleport" in caplog.text


async def test_action_missing_from_cost_table(db, user):
    authorizer = ActionAuthorizer(db, costs={MeteredAction.SEARCH: 1})
    with pytest.raises(UnknownActionError):
        authorizer.cost_of("contact")


async def test_costs_table(db):
    assert ActionAuthorizer(db).costs() == {"search": 1, "contact": 2}


async def test_concurrent_authorize_refuses_atomically(session_factory, user):
    """Balance 2 and five concurrent contacts (cost 2): exactly one succeeds."""
    await fund(session_factory, user.id, 2)

    async def attempt():
        async with session_factory() as session:
            try:
                await ActionAuthorizer(session).authorize(user.id, "contact")
                return "ok"
            except InsufficientBalanceError:
                return "refused"

    outcomes = await asyncio.gather(*(attempt() for _ in range(5)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("refused") == 4
    assert await balance_of(session_factory, user.id) == 0


async def test_reverse_refunds_once(db, session_factory, user):
    await fund(session_factory, user.id, 2)
    authorizer = ActionAuthorizer(db)
    result = await authorizer.authorize(user.id, "contact")

    await authorizer.reverse(user.id, result.entry_id)
    await authorizer.reverse(user.id, result.entry_id)

    assert await LedgerService(db).get_balance(user.id) == 2


async def test_reverse_rejects_other_users_entry(db, session_factory, user, other_user):
    await fund(session_factory, user.id, 2)
    authorizer = ActionAuthorizer(db)
    result = await authorizer.authorize(user.id, "search")

    with pytest.raises(AuthorizationError):
        await authorizer.reverse(other_user.id, result.entry_id)


def test_settings_reject_missing_cost():
    with pytest.raises(ValueError):
        Settings(action_costs={"search": 1})


def test_settings_reject_non_positive_cost():
    with pytest.raises(ValueError):
        Settings(action_costs={"search": 0, "contact": 2})


def test_settings_reject_unknown_action():
    with pytest.raises(ValueError):
        Settings(action_costs={"search": 1, "contact": 2, "teleport": 3})
