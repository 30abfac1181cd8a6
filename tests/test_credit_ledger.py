from __future__ import annotations

import asyncio
import json

import pytest

from explain_gateway.db.memory import InMemoryDBManager
from explain_gateway.errors import LedgerUnavailable, StorageError
from explain_gateway.logging.ledger_logger import LedgerLogger
from explain_gateway.services.credit_ledger import Consumed, CreditLedger, Denied


class BrokenCreditsDB(InMemoryDBManager):
    async def try_consume_credit(self, user_id: str):
        raise StorageError("connection refused")


@pytest.mark.asyncio
async def test_consume_until_denied(db, ledger_logger, make_user):
    ledger = CreditLedger(db=db, ledger=ledger_logger)
    user = await make_user(credits=2)

    assert await ledger.try_consume_credit(user.id) == Consumed(remaining=1)
    assert await ledger.try_consume_credit(user.id) == Consumed(remaining=0)

    denied = await ledger.try_consume_credit(user.id)
    assert isinstance(denied, Denied)
    assert denied.remaining == 0
    assert await ledger.get_balance(user.id) == 0


@pytest.mark.asyncio
async def test_unknown_user_is_denied(db, ledger_logger):
    ledger = CreditLedger(db=db, ledger=ledger_logger)
    assert await ledger.try_consume_credit("nobody") == Denied()


@pytest.mark.asyncio
@pytest.mark.parametrize("credits,requests", [(1, 10), (3, 10), (5, 5), (7, 3)])
async def test_concurrent_requests_never_overspend(db, ledger_logger, make_user, credits, requests):
    ledger = CreditLedger(db=db, ledger=ledger_logger)
    user = await make_user(credits=credits)

    results = await asyncio.gather(
        *(ledger.try_consume_credit(user.id) for _ in range(requests))
    )

    consumed = [r for r in results if isinstance(r, Consumed)]
    denied = [r for r in results if isinstance(r, Denied)]
    assert len(consumed) == min(requests, credits)
    assert len(denied) == max(0, requests - credits)
    assert sorted(r.remaining for r in consumed) == list(
        range(credits - len(consumed), credits)
    )
    assert await ledger.get_balance(user.id) == credits - min(requests, credits)


@pytest.mark.asyncio
async def test_users_do_not_share_balances(db, ledger_logger, make_user):
    ledger = CreditLedger(db=db, ledger=ledger_logger)
    alice = await make_user(credits=1)
    bob = await make_user(credits=1)

    results = await asyncio.gather(
        ledger.try_consume_credit(alice.id), ledger.try_consume_credit(bob.id)
    )
    assert results == [Consumed(remaining=0), Consumed(remaining=0)]


@pytest.mark.asyncio
async def test_storage_failure_raises_ledger_unavailable(tmp_path):
    db = BrokenCreditsDB()
    ledger = CreditLedger(db=db, ledger=LedgerLogger(db=db, file_path=tmp_path / "l.log"))

    with pytest.raises(LedgerUnavailable):
        await ledger.try_consume_credit("user-1")


@pytest.mark.asyncio
async def test_decisions_are_audited(db, ledger_logger, ledger_path, make_user):
    ledger = CreditLedger(db=db, ledger=ledger_logger)
    user = await make_user(credits=1)

    await ledger.try_consume_credit(user.id, correlation_id="req-1")
    await ledger.try_consume_credit(user.id, correlation_id="req-2")

    lines = [json.loads(line) for line in ledger_path.read_text().splitlines()]
    assert [(e["event_type"], e["message"]) for e in lines] == [
        ("transaction", "Credit consumed"),
        ("transaction", "Credit denied"),
    ]
    assert lines[0]["details"] == {"outcome": "consumed", "amount": 1, "remaining": 0}
    assert lines[1]["details"]["outcome"] == "denied"
    assert [e["correlation_id"] for e in lines] == ["req-1", "req-2"]
