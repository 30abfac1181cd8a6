from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..db.base import BaseDBManager
from ..errors import LedgerUnavailable, StorageError
from ..logging.ledger_logger import LedgerLogger


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Consumed:
    remaining: int


@dataclass(frozen=True)
class Denied:
    remaining: int = 0


MeteringResult = Union[Consumed, Denied]


class CreditLedger:
    """
    Owner of the per-user credit counter.

    The only mutation offered is `try_consume_credit`, a conditional
    decrement that the database applies atomically per user. A successful
    return means the new balance is already stored.
    """

    def __init__(self, db: BaseDBManager, ledger: LedgerLogger) -> None:
        self._db = db
        self._ledger = ledger

    async def try_consume_credit(
        self, user_id: str, correlation_id: Optional[str] = None
    ) -> MeteringResult:
        result = await self.consume(user_id)
        await self.record(user_id, result, correlation_id=correlation_id)
        return result

    async def consume(self, user_id: str) -> MeteringResult:
        """Apply the conditional decrement only; nothing is awaited after it commits."""
        try:
            async with self._db.transaction():
                remaining = await self._db.try_consume_credit(user_id)
        except StorageError as exc:
            logger.error("Credit ledger unavailable for user %s: %s", user_id, exc)
            raise LedgerUnavailable(str(exc)) from exc

        if remaining is None:
            return Denied()
        return Consumed(remaining=remaining)

    async def record(
        self,
        user_id: str,
        result: MeteringResult,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Audit a metering decision. Denial is an ordinary outcome, not an error."""
        if isinstance(result, Denied):
            await self._ledger.log_transaction(
                user_id=user_id,
                message="Credit denied",
                details={"outcome": "denied", "amount": 0, "remaining": 0},
                correlation_id=correlation_id,
            )
            return

        await self._ledger.log_transaction(
            user_id=user_id,
            message="Credit consumed",
            details={"outcome": "consumed", "amount": 1, "remaining": result.remaining},
            correlation_id=correlation_id,
        )

    async def get_balance(self, user_id: str) -> int:
        try:
            user = await self._db.get_user(user_id)
        except StorageError as exc:
            raise LedgerUnavailable(str(exc)) from exc
        return user.credits if user is not None else 0
