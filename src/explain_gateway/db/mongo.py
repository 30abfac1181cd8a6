from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Type, TypeVar
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from .base import BaseDBManager
from ..errors import StorageError
from ..models.base import DBSerializableModel
from ..models.history import HistoryRecord
from ..models.ledger import LedgerEntry
from ..models.user import Role, UserAccount


TModel = TypeVar("TModel", bound=DBSerializableModel)


class MongoDBManager(BaseDBManager):
    """
    MongoDB implementation of BaseDBManager using motor (async driver).

    IDs are stored as string `_id` fields and mirrored in the `id` attribute
    of each model. The credit decrement relies on single-document atomicity:
    `find_one_and_update` filtered on `credits > 0`, so concurrent requests
    for one user can never take the balance below zero.
    """

    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self._db = database

    @classmethod
    def from_client_uri(cls, uri: str, db_name: str) -> "MongoDBManager":
        client = AsyncIOMotorClient(uri)
        return cls(client[db_name])

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        # Every write the gateway makes touches a single document, which
        # MongoDB already applies atomically.
        yield

    @asynccontextmanager
    async def _driver_errors(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except PyMongoError as exc:
            raise StorageError(f"{operation} failed: {exc}") from exc

    # Helper utilities
    @staticmethod
    def _prepare_insert(model: TModel) -> Dict[str, Any]:
        data = model.serialize_for_db()
        model_id = getattr(model, "id", None)
        if not model_id:
            model_id = uuid4().hex
            setattr(model, "id", model_id)
            data["id"] = model_id
        data["_id"] = model_id
        return data

    @staticmethod
    def _decode(model_cls: Type[TModel], doc: Optional[Mapping[str, Any]]) -> Optional[TModel]:
        if doc is None:
            return None
        data = dict(doc)
        if "_id" in data and "id" not in data:
            data["id"] = str(data["_id"])
        data.pop("_id", None)
        return model_cls.model_validate(data)

    # User operations
    async def add_user(self, user: UserAccount) -> UserAccount:
        col = self._db[UserAccount.collection_name]
        data = self._prepare_insert(user)
        async with self._driver_errors("add_user"):
            await col.insert_one(data)
        return user

    async def get_user(self, user_id: str) -> Optional[UserAccount]:
        col = self._db[UserAccount.collection_name]
        async with self._driver_errors("get_user"):
            doc = await col.find_one({"_id": user_id})
        return self._decode(UserAccount, doc)

    async def update_user(self, user: UserAccount) -> UserAccount:
        if not user.id:
            raise ValueError("User must have id to be updated")
        user.updated_at = datetime.utcnow()
        col = self._db[UserAccount.collection_name]
        data = user.serialize_for_db()
        data["_id"] = user.id
        async with self._driver_errors("update_user"):
            await col.replace_one({"_id": user.id}, data, upsert=False)
        return user

    # Credits
    async def try_consume_credit(self, user_id: str) -> Optional[int]:
        col = self._db[UserAccount.collection_name]
        async with self._driver_errors("try_consume_credit"):
            doc = await col.find_one_and_update(
                {"_id": user_id, "credits": {"$gt": 0}},
                {"$inc": {"credits": -1}, "$set": {"updated_at": datetime.utcnow()}},
                projection={"credits": True},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            return None
        return int(doc["credits"])

    async def reset_credits(self, role: Role, amount: int) -> int:
        col = self._db[UserAccount.collection_name]
        async with self._driver_errors("reset_credits"):
            result = await col.update_many(
                {"role": role.value, "credits": {"$ne": amount}},
                {"$set": {"credits": amount, "updated_at": datetime.utcnow()}},
            )
        return result.modified_count

    # History
    async def add_history_record(self, record: HistoryRecord) -> HistoryRecord:
        col = self._db[HistoryRecord.collection_name]
        data = self._prepare_insert(record)
        async with self._driver_errors("add_history_record"):
            await col.insert_one(data)
        return record

    async def get_recent_history(self, user_id: str, limit: int) -> List[HistoryRecord]:
        col = self._db[HistoryRecord.collection_name]
        async with self._driver_errors("get_recent_history"):
            cursor = col.find({"user_id": user_id}).sort("created_at", DESCENDING).limit(limit)
            docs = await cursor.to_list(length=limit)
        return [self._decode(HistoryRecord, d) for d in docs if d is not None]  # type: ignore[misc]

    # Ledger
    async def add_ledger_entry(self, entry: LedgerEntry) -> LedgerEntry:
        col = self._db[LedgerEntry.collection_name]
        data = self._prepare_insert(entry)
        async with self._driver_errors("add_ledger_entry"):
            await col.insert_one(data)
        return entry
