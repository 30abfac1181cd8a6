from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional

from pydantic import Field

from .base import DBSerializableModel


class Role(str, Enum):
    BASIC = "Basic"
    PRO = "Pro"


class UserAccount(DBSerializableModel):
    """
    Account as seen by the gateway core.

    Registration, login and password storage belong to the host system;
    the core reads `role` and mutates `credits` only through the ledger.
    """

    collection_name: ClassVar[str] = "users"
    indexes: ClassVar[tuple[str, ...]] = ("username", "email")

    id: Optional[str] = Field(default=None)
    username: str
    email: str
    role: Role = Role.BASIC
    credits: int = Field(default=50, ge=0, description="Credits left for today.")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
