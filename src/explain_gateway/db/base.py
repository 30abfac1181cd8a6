from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ..models.history import HistoryRecord
from ..models.ledger import LedgerEntry
from ..models.user import Role, UserAccount


class BaseDBManager(ABC):
    """
    DB-agnostic async manager interface.

    Implementations raise `StorageError` for backend failures so that the
    services above never see driver-specific exceptions.
    """

    @abstractmethod
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Atomic unit of work where the backend supports one.
        Should rollback on exception and commit on success.
        """
        yield

    # User operations
    @abstractmethod
    async def add_user(self, user: UserAccount) -> UserAccount: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserAccount]: ...

    @abstractmethod
    async def update_user(self, user: UserAccount) -> UserAccount: ...

    # Credits
    @abstractmethod
    async def try_consume_credit(self, user_id: str) -> Optional[int]:
        """
        Decrement the user's credits by one if and only if they are positive.

        Returns the new balance, or None when nothing was decremented
        (no credits left, or no such user). Must be atomic per user.
        """
        ...

    @abstractmethod
    async def reset_credits(self, role: Role, amount: int) -> int:
        """Set every account with `role` to `amount` credits; returns how many changed."""
        ...

    # History
    @abstractmethod
    async def add_history_record(self, record: HistoryRecord) -> HistoryRecord: ...

    @abstractmethod
    async def get_recent_history(self, user_id: str, limit: int) -> List[HistoryRecord]:
        """Most recent `limit` records for the user, newest first."""
        ...

    # Ledger
    @abstractmethod
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry: ...
