from __future__ import annotations

import pytest
from jose import jwt

from explain_gateway.auth.authenticator import JwtAuthenticator, Principal
from explain_gateway.errors import Unauthorized
from explain_gateway.models.user import Role

from conftest import SECRET


@pytest.mark.asyncio
async def test_round_trip_uses_stored_role(authenticator, make_user):
    user = await make_user(role=Role.PRO)
    token = authenticator.issue_token(user.id, role=Role.BASIC)

    assert await authenticator.authenticate(token) == Principal(user_id=user.id, role=Role.PRO)


@pytest.mark.asyncio
async def test_accepts_id_claim(authenticator, make_user):
    user = await make_user()
    token = authenticator.issue_token("ignored", id=user.id, sub=None)
    assert (await authenticator.authenticate(token)).user_id == user.id


@pytest.mark.asyncio
async def test_rejects_foreign_signature(db, authenticator, make_user):
    user = await make_user()
    other = JwtAuthenticator(db=db, secret="another-secret")
    with pytest.raises(Unauthorized, match="Signature verification failed"):
        await authenticator.authenticate(other.issue_token(user.id))


@pytest.mark.asyncio
async def test_rejects_expired_token(db, make_user):
    user = await make_user()
    short_lived = JwtAuthenticator(db=db, secret="s", lifetime_seconds=-10)
    with pytest.raises(Unauthorized, match="expired"):
        await short_lived.authenticate(short_lived.issue_token(user.id))


@pytest.mark.asyncio
async def test_rejects_unknown_account(authenticator):
    with pytest.raises(Unauthorized, match="No user"):
        await authenticator.authenticate(authenticator.issue_token("ghost"))


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "", "abc", "a.b", "x.y.z"])
async def test_rejects_missing_or_malformed(authenticator, token):
    with pytest.raises(Unauthorized):
        await authenticator.authenticate(token)


@pytest.mark.asyncio
async def test_rejects_other_algorithms(authenticator, make_user):
    user = await make_user()
    token = jwt.encode({"sub": user.id}, SECRET, algorithm="HS512")
    with pytest.raises(Unauthorized, match="invalid token"):
        await authenticator.authenticate(token)


@pytest.mark.asyncio
async def test_accepts_tokens_from_the_host_application(authenticator, make_user):
    user = await make_user(role=Role.PRO)
    token = jwt.encode({"id": user.id}, SECRET, algorithm="HS256")
    assert await authenticator.authenticate(token) == Principal(user_id=user.id, role=Role.PRO)
