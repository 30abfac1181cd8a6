from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from .base import BaseDBManager
from ..models.history import HistoryRecord
from ..models.ledger import LedgerEntry
from ..models.user import Role, UserAccount


class InMemoryDBManager(BaseDBManager):
    """
    Simple in-memory implementation used for tests and local development.
    NOT suitable for production, but exercises the abstraction and services.

    Credit decrements are serialized per user id with one asyncio.Lock per
    key; different users never contend.
    """

    def __init__(self) -> None:
        self._users: Dict[str, UserAccount] = {}
        self._history: List[HistoryRecord] = []
        self._ledger: List[LedgerEntry] = []
        self._credit_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._id_counter: int = 0

    def _next_id(self) -> str:
        self._id_counter += 1
        return str(self._id_counter)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        # In-memory backend cannot provide real rollback; this is a no-op.
        yield

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        if user.id is None:
            user.id = self._next_id()
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        return self._users.get(user_id)

    async def update_user(self, user: UserAccount) -> UserAccount:
        if user.id is None:
            raise ValueError("User must have id to be updated")
        user.updated_at = datetime.utcnow()
        self._users[user.id] = user
        return user

    # Credits
    async def try_consume_credit(self, user_id: str) -> Optional[int]:
        async with self._credit_locks[user_id]:
            user = self._users.get(user_id)
            if user is None or user.credits <= 0:
                return None
            user.credits -= 1
            user.updated_at = datetime.utcnow()
            return user.credits

    async def reset_credits(self, role: Role, amount: int) -> int:
        changed = 0
        for user_id, user in list(self._users.items()):
            if user.role is not role:
                continue
            async with self._credit_locks[user_id]:
                if user.credits != amount:
                    user.credits = amount
                    user.updated_at = datetime.utcnow()
                    changed += 1
        return changed

    # History
    async def add_history_record(self, record: HistoryRecord) -> HistoryRecord:
        if record.id is None:
            record.id = self._next_id()
        self._history.append(record)
        return record

    async def get_recent_history(self, user_id: str, limit: int) -> List[HistoryRecord]:
        records = [r for r in self._history if r.user_id == user_id]
        # Insertion order breaks created_at ties
        records = sorted(
            enumerate(records), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True
        )
        return [r for _, r in records[:limit]]

    # Ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.id is None:
            entry.id = self._next_id()
        self._ledger.append(entry)
        return entry
