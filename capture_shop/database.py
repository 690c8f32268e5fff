from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import settings
from .errors import DuplicateKey, NotFound, RemoteUnavailable

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None

async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db


def _key(doc_id: str) -> Any:
    # Generated keys are ObjectIds, caller-assigned keys (orders, users) are plain strings
    return ObjectId(doc_id) if ObjectId.is_valid(doc_id) else doc_id


def _to_client(doc: dict[str, Any]) -> dict[str, Any]:
    doc["id"] = str(doc.pop("_id"))
    return doc


class CollectionGateway:
    """Single-document CRUD against named collections.

    Every record comes back with its key injected as ``id``. Driver failures
    are raised as ``RemoteUnavailable``; writes that match nothing raise
    ``NotFound``. Nothing is retried.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def list(self, collection_name: str, filter_dict: dict[str, Any] | None = None, limit: int = 0) -> list[dict[str, Any]]:
        try:
            cursor = self.db[collection_name].find(filter_dict or {}).limit(limit)
            return [_to_client(d) async for d in cursor]
        except PyMongoError as e:
            logger.error(f"Listing {collection_name} failed: {e}")
            raise RemoteUnavailable(str(e)) from e

    async def get(self, collection_name: str, doc_id: str) -> dict[str, Any]:
        try:
            doc = await self.db[collection_name].find_one({"_id": _key(doc_id)})
        except PyMongoError as e:
            logger.error(f"Reading {collection_name}/{doc_id} failed: {e}")
            raise RemoteUnavailable(str(e)) from e
        if doc is None:
            raise NotFound(f"{collection_name}/{doc_id}")
        return _to_client(doc)

    async def create(self, collection_name: str, data: dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        data_with_meta = {**data, "created_at": now, "updated_at": now}
        data_with_meta.pop("id", None)
        try:
            result = await self.db[collection_name].insert_one(data_with_meta)
        except PyMongoError as e:
            logger.error(f"Creating in {collection_name} failed: {e}")
            raise RemoteUnavailable(str(e)) from e
        logger.info(f"Created {collection_name}/{result.inserted_id}")
        return str(result.inserted_id)

    async def set(self, collection_name: str, doc_id: str, data: dict[str, Any]) -> str:
        """Write a record under a caller-chosen key, replacing any previous one."""
        now = datetime.now(timezone.utc)
        data_with_meta = {"created_at": now, **data, "updated_at": now}
        data_with_meta.pop("id", None)
        try:
            await self.db[collection_name].replace_one({"_id": doc_id}, data_with_meta, upsert=True)
        except PyMongoError as e:
            logger.error(f"Writing {collection_name}/{doc_id} failed: {e}")
            raise RemoteUnavailable(str(e)) from e
        logger.info(f"Wrote {collection_name}/{doc_id}")
        return doc_id

    async def insert(self, collection_name: str, doc_id: str, data: dict[str, Any]) -> str:
        """Write a record under a caller-chosen key that must not be taken yet."""
        now = datetime.now(timezone.utc)
        doc = {**data, "_id": doc_id, "created_at": now, "updated_at": now}
        doc.pop("id", None)
        try:
            await self.db[collection_name].insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateKey(f"{collection_name}/{doc_id}") from e
        except PyMongoError as e:
            logger.error(f"Inserting {collection_name}/{doc_id} failed: {e}")
            raise RemoteUnavailable(str(e)) from e
        logger.info(f"Inserted {collection_name}/{doc_id}")
        return doc_id

    async def update(self, collection_name: str, doc_id: str, data: dict[str, Any]) -> None:
        fields = {k: v for k, v in data.items() if k != "id"}
        fields["updated_at"] = datetime.now(timezone.utc)
        try:
            result = await self.db[collection_name].update_one({"_id": _key(doc_id)}, {"$set": fields})
        except PyMongoError as e:
            logger.error(f"Updating {collection_name}/{doc_id} failed: {e}")
            raise RemoteUnavailable(str(e)) from e
        if result.matched_count == 0:
            raise NotFound(f"{collection_name}/{doc_id}")
        logger.info(f"Updated {collection_name}/{doc_id}")

    async def delete(self, collection_name: str, doc_id: str) -> None:
        try:
            result = await self.db[collection_name].delete_one({"_id": _key(doc_id)})
        except PyMongoError as e:
            logger.error(f"Deleting {collection_name}/{doc_id} failed: {e}")
            raise RemoteUnavailable(str(e)) from e
        if result.deleted_count == 0:
            raise NotFound(f"{collection_name}/{doc_id}")
        logger.info(f"Deleted {collection_name}/{doc_id}")


async def get_gateway() -> CollectionGateway:
    return CollectionGateway(await get_db())
