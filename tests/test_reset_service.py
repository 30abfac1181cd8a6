from __future__ import annotations

import asyncio
import json

import pytest

from explain_gateway.models.user import Role
from explain_gateway.services.credit_ledger import Consumed, CreditLedger
from explain_gateway.services.reset_service import CreditResetService


@pytest.mark.asyncio
async def test_reset_restores_role_allowances(db, ledger_logger, ledger_path, make_user):
    basic = await make_user(credits=0, role=Role.BASIC)
    full = await make_user(credits=50, role=Role.BASIC)
    pro = await make_user(credits=3, role=Role.PRO)
    service = CreditResetService(
        db=db, ledger=ledger_logger, allowances={Role.BASIC: 50, Role.PRO: 500}
    )

    changed = await service.reset_daily_credits()

    assert changed == {Role.BASIC: 1, Role.PRO: 1}
    assert (await db.get_user(basic.id)).credits == 50
    assert (await db.get_user(full.id)).credits == 50
    assert (await db.get_user(pro.id)).credits == 500

    [entry] = [json.loads(line) for line in ledger_path.read_text().splitlines()]
    assert entry["event_type"] == "system"
    assert entry["details"]["Pro"] == {"allowance": 500, "accounts": 1}


@pytest.mark.asyncio
async def test_reset_lets_exhausted_users_generate_again(db, ledger_logger, make_user):
    user = await make_user(credits=0)
    ledger = CreditLedger(db=db, ledger=ledger_logger)
    service = CreditResetService(
        db=db, ledger=ledger_logger, allowances={Role.BASIC: 2, Role.PRO: 10}
    )

    await service.reset_daily_credits()

    assert await ledger.try_consume_credit(user.id) == Consumed(remaining=1)


def test_every_role_needs_an_allowance(db, ledger_logger):
    with pytest.raises(ValueError, match="Pro"):
        CreditResetService(db=db, ledger=ledger_logger, allowances={Role.BASIC: 50})


@pytest.mark.asyncio
async def test_reset_tolerates_signups_while_waiting_on_a_busy_account(db, make_user):
    busy = await make_user(credits=1)
    idle = await make_user(credits=1)
    lock = db._credit_locks[busy.id]
    await lock.acquire()

    reset = asyncio.create_task(db.reset_credits(Role.BASIC, 5))
    await asyncio.sleep(0)
    newcomer = await make_user(credits=1)
    lock.release()

    assert await reset == 2
    assert (await db.get_user(busy.id)).credits == 5
    assert (await db.get_user(idle.id)).credits == 5
    assert (await db.get_user(newcomer.id)).credits == 1
