from __future__ import annotations

from typing import List

from ..db.base import BaseDBManager
from ..models.history import HistoryRecord


class HistoryStore:
    """Append-only log of generation attempts, one record per charged credit."""

    def __init__(self, db: BaseDBManager, default_limit: int = 10, max_limit: int = 50) -> None:
        self._db = db
        self._default_limit = default_limit
        self._max_limit = max_limit

    async def append(self, record: HistoryRecord) -> HistoryRecord:
        # StorageError propagates; the relay decides how loudly to report it.
        return await self._db.add_history_record(record)

    async def recent(self, user_id: str, limit: int | None = None) -> List[HistoryRecord]:
        limit = self._default_limit if limit is None else limit
        limit = max(1, min(limit, self._max_limit))
        return await self._db.get_recent_history(user_id, limit)
