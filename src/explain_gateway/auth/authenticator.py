"""Identity checks for inbound requests.

The gateway only needs "who is calling and what is their role". Token
issuance belongs to the host application; `issue_token` exists so tests and
local tooling can mint tokens signed with the same secret.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from ..db.base import BaseDBManager
from ..errors import StorageError, Unauthorized
from ..models.user import Role


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role


class Authenticator(ABC):
    @abstractmethod
    async def authenticate(self, credentials: Optional[str]) -> Principal:
        """Resolve an opaque credential to a principal or raise Unauthorized."""
        ...


class JwtAuthenticator(Authenticator):
    """
    HS256 JWT verification against the configured shared secret.

    Accepts tokens carrying the user id in `sub` or `id`. The account must
    still exist; its stored role wins over the role claim.
    """

    algorithm = "HS256"

    def __init__(self, db: BaseDBManager, secret: str, lifetime_seconds: int = 86400) -> None:
        self._db = db
        self._secret = secret
        self._lifetime_seconds = lifetime_seconds

    def issue_token(self, user_id: str, role: Role = Role.BASIC, **claims: Any) -> str:
        """Sign a token for `user_id`. A claim passed as None is left out."""
        now = int(time.time())
        payload: Dict[str, Any] = {
            "sub": user_id,
            "role": role.value,
            "iat": now,
            "exp": now + self._lifetime_seconds,
        }
        for name, value in claims.items():
            if value is None:
                payload.pop(name, None)
            else:
                payload[name] = value
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise Unauthorized("token expired") from exc
        except JWTError as exc:
            raise Unauthorized(f"invalid token: {exc}") from exc

    async def authenticate(self, credentials: Optional[str]) -> Principal:
        if not credentials:
            raise Unauthorized("Not authorized to access this route. Please log in.")

        payload = self.decode_token(credentials)
        user_id = payload.get("sub") or payload.get("id")
        if not user_id:
            raise Unauthorized("token has no subject")

        try:
            user = await self._db.get_user(str(user_id))
        except StorageError as exc:
            raise Unauthorized("account lookup failed") from exc
        if user is None or user.id is None:
            raise Unauthorized("No user found with this ID.")
        return Principal(user_id=user.id, role=user.role)
