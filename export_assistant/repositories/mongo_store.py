import logging
from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError
from export_assistant.core.exceptions import PersistenceError
from export_assistant.repositories.base import PersistenceStore
from export_assistant.schemas.base import utc_now

logger = logging.getLogger("mongo_store")

KV_COLLECTION = "kv_cache"


class MongoStore(PersistenceStore):
    """PersistenceStore on motor. Key/value entries live in `kv_cache`."""

    def __init__(self, db: AsyncIOMotorDatabase, client: Optional[AsyncIOMotorClient] = None):
        self.db = db
        self.client = client
        self.kv_collection = db[KV_COLLECTION]

    async def get(self, key: str) -> Optional[Any]:
        try:
            doc = await self.kv_collection.find_one({"_id": key})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to read key {key}: {e}")
        if doc is None:
            return None
        # The TTL index sweeps lazily, so expiry is checked on read as well
        expires_at = doc.get("expires_at")
        if expires_at is not None and expires_at.replace(tzinfo=timezone.utc) <= utc_now():
            return None
        return doc.get("value")

    async def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> None:
        doc = {"value": value, "expires_at": None}
        if ttl_ms:
            doc["expires_at"] = utc_now() + timedelta(milliseconds=ttl_ms)
        try:
            await self.kv_collection.update_one({"_id": key}, {"$set": doc}, upsert=True)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to write key {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.kv_collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to delete key {key}: {e}")

    async def save(self, collection: str, record: Dict[str, Any], key_field: str = "user_id") -> None:
        try:
            await self.db[collection].update_one(
                {key_field: record[key_field]},
                {"$set": record},
                upsert=True,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to save into {collection}: {e}")

    async def load_by_user_id(self, collection: str, user_id: str) -> List[Dict[str, Any]]:
        try:
            cursor = self.db[collection].find({"user_id": user_id}, {"_id": 0})
            return [doc async for doc in cursor]
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load {collection} for {user_id}: {e}")

    async def load_all(self, collection: str) -> List[Dict[str, Any]]:
        try:
            cursor = self.db[collection].find({}, {"_id": 0})
            return [doc async for doc in cursor]
        except PyMongoError as e:
            raise PersistenceError(f"Failed to load {collection}: {e}")

    async def delete_by_user_id(self, collection: str, user_id: str) -> int:
        try:
            result = await self.db[collection].delete_many({"user_id": user_id})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to delete {collection} for {user_id}: {e}")
        return result.deleted_count

    async def delete_before(self, collection: str, field: str, cutoff: float) -> int:
        try:
            result = await self.db[collection].delete_many({field: {"$lt": cutoff}})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to prune {collection}: {e}")
        return result.deleted_count

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("Mongo client closed")
