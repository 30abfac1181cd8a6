from __future__ import annotations

from typing import Dict

from ..db.base import BaseDBManager
from ..logging.ledger_logger import LedgerLogger
from ..models.user import Role


class CreditResetService:
    """
    Restores each account to its role's daily allowance.

    Typically invoked once a day by a scheduler owned by the deployment.
    """

    def __init__(
        self,
        db: BaseDBManager,
        ledger: LedgerLogger,
        allowances: Dict[Role, int],
    ) -> None:
        missing = [role.value for role in Role if role not in allowances]
        if missing:
            raise ValueError(f"no daily allowance for roles: {', '.join(missing)}")
        self._db = db
        self._ledger = ledger
        self._allowances = dict(allowances)

    async def reset_daily_credits(self) -> Dict[Role, int]:
        """Returns how many accounts were changed, per role."""
        changed: Dict[Role, int] = {}
        async with self._db.transaction():
            for role, amount in self._allowances.items():
                changed[role] = await self._db.reset_credits(role, amount)

        await self._ledger.log_system(
            message="Daily credits reset",
            details={
                role.value: {"allowance": self._allowances[role], "accounts": count}
                for role, count in changed.items()
            },
        )
        return changed
