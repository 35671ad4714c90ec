"""Authorizer Service - Token-metered access control for marketplace actions.

Searching listings and contacting owners cost tokens. Callers ask for
authorization right before doing the work:

    authorizer = ActionAuthorizer(db)
    result = await authorizer.authorize(user.id, "contact")
    try:
        await messaging.start_conversation(...)
    except Exception:
        await authorizer.reverse(user.id, result.entry_id)
        raise

Authorization and consumption are one step: a successful authorize() has
already debited the ledger, a refused one has not touched it.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.core.exceptions import AuthorizationError, TokenServiceError, UnknownActionError
from src.models.ledger import ACTION_DEBIT_REASONS, LedgerEntry, MeteredAction
from src.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationResult:
    """Outcome of a successful authorization."""

    authorized: bool
    action: MeteredAction
    cost: int
    remaining_balance: int
    entry_id: int


class ActionAuthorizer:
    """Debits the per-action token cost, or refuses."""

    def __init__(
        self,
        db: AsyncSession,
        costs: Mapping[MeteredAction, int] | None = None,
        ledger_service: LedgerService | None = None,
    ):
        self.db = db
        self.ledger = ledger_service or LedgerService(db)
        self._costs = dict(costs if costs is not None else get_settings().action_costs)

    def resolve_action(self, action_name: str | MeteredAction) -> MeteredAction:
        """Map an action name onto the closed set of metered actions.

        Raises:
            UnknownActionError: Name is not a metered action
        """
        try:
            action = MeteredAction(action_name)
        except ValueError:
            logger.error(f"[authorizer] unknown metered action {action_name!r}")
            raise UnknownActionError(str(action_name)) from None
        if action not in self._costs:
            logger.error(f"[authorizer] no cost configured for action {action.value!r}")
            raise UnknownActionError(action.value)
        return action

    def cost_of(self, action_name: str | MeteredAction) -> int:
        """Token cost of one action."""
        return self._costs[self.resolve_action(action_name)]

    def costs(self) -> dict[str, int]:
        """Published cost table."""
        return {action.value: cost for action, cost in self._costs.items()}

    async def authorize(self, user_id: int, action_name: str | MeteredAction) -> AuthorizationResult:
        """Authorize one metered action and debit its cost.

        Args:
            user_id: Acting user
            action_name: Metered action (e.g. 'search', 'contact')

        Returns:
            AuthorizationResult with the remaining balance and debit entry id

        Raises:
            UnknownActionError: Action is not metered (programmer error)
            InsufficientBalanceError: Balance lower than the action cost
        """
        action = self.resolve_action(action_name)
        cost = self._costs[action]

        try:
            entry = await self.ledger.apply_debit(
                user_id=user_id,
                amount=cost,
                reason=ACTION_DEBIT_REASONS[action],
            )
            await self.db.commit()
        except TokenServiceError as e:
            await self.db.rollback()
            logger.info(
                f"[authorizer] refused user_id={user_id} action={action.value} "
                f"cost={cost} reason={e.message}"
            )
            raise

        logger.info(
            f"[authorizer] authorized user_id={user_id} action={action.value} "
            f"cost={cost} remaining={entry.balance_after}"
        )
        return AuthorizationResult(
            authorized=True,
            action=action,
            cost=cost,
            remaining_balance=entry.balance_after,
            entry_id=entry.id,  # type: ignore[arg-type]
        )

    async def reverse(self, user_id: int, entry_id: int) -> LedgerEntry:
        """Refund an authorization whose downstream action failed.

        Raises:
            NotFoundError: Entry does not exist
            AuthorizationError: Entry belongs to another user
        """
        entry = await self.db.get(LedgerEntry, entry_id)
        if entry is not None and entry.user_id != user_id:
            raise AuthorizationError("Ledger entry belongs to another user")
        return await self.ledger.reverse_debit(entry_id)
