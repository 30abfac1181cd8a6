from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from explain_gateway.auth.authenticator import JwtAuthenticator
from explain_gateway.db.memory import InMemoryDBManager
from explain_gateway.errors import GenerationError
from explain_gateway.logging.ledger_logger import LedgerLogger
from explain_gateway.models.user import Role, UserAccount
from explain_gateway.services.credit_ledger import CreditLedger
from explain_gateway.services.generation_client import GenerationClient, ModelCatalog
from explain_gateway.services.history_store import HistoryStore
from explain_gateway.services.prompts import Prompt
from explain_gateway.services.streaming_relay import StreamingRelay

SECRET = "test-secret"


class ScriptedGenerationClient(GenerationClient):
    """Yields a fixed list of fragments, optionally failing at index `fail_at`."""

    def __init__(
        self,
        fragments: List[str],
        fail_at: Optional[int] = None,
        delay: float = 0.0,
    ) -> None:
        self.fragments = fragments
        self.fail_at = fail_at
        self.delay = delay
        self.calls: List[tuple[Prompt, str]] = []
        self.pulled = 0
        self.closed = False

    async def stream_generation(self, prompt: Prompt, model: str):
        self.calls.append((prompt, model))
        try:
            for index, fragment in enumerate(self.fragments):
                if self.fail_at == index:
                    raise GenerationError("upstream connection reset")
                if self.delay:
                    await asyncio.sleep(self.delay)
                self.pulled += 1
                yield fragment
            if self.fail_at is not None and self.fail_at >= len(self.fragments):
                raise GenerationError("upstream connection reset")
        finally:
            self.closed = True


@pytest.fixture
def db() -> InMemoryDBManager:
    return InMemoryDBManager()


@pytest.fixture
def ledger_path(tmp_path):
    return tmp_path / "ledger.log"


@pytest.fixture
def ledger_logger(db, ledger_path) -> LedgerLogger:
    return LedgerLogger(db=db, file_path=ledger_path)


@pytest.fixture
def authenticator(db) -> JwtAuthenticator:
    return JwtAuthenticator(db=db, secret=SECRET)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(credits: int = 1, role: Role = Role.BASIC) -> UserAccount:
        counter["n"] += 1
        n = counter["n"]
        return await db.add_user(
            UserAccount(username=f"user{n}", email=f"user{n}@example.com", role=role, credits=credits)
        )

    return _make


@pytest.fixture
def make_relay(db, ledger_logger, authenticator):
    def _make(generation: GenerationClient, deadline_seconds: float = 5.0) -> StreamingRelay:
        return StreamingRelay(
            authenticator=authenticator,
            credit_ledger=CreditLedger(db=db, ledger=ledger_logger),
            generation=generation,
            history=HistoryStore(db=db),
            ledger_logger=ledger_logger,
            catalog=ModelCatalog("gemini-2.5-flash-lite", "gemini-2.5-pro"),
            deadline_seconds=deadline_seconds,
        )

    return _make
