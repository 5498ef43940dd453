import asyncio
from pymongo import ASCENDING
from export_assistant.core.config import settings
from export_assistant.core.mongo import create_mongo_client, get_mongo_db
from export_assistant.repositories.base import ANALYTICS_EVENTS, BEHAVIOR_PATTERNS, USER_CONTEXTS
from export_assistant.repositories.mongo_store import KV_COLLECTION


async def init_mongo_indexes():
    client = create_mongo_client()
    db = get_mongo_db(client)
    try:
        await db[USER_CONTEXTS].create_index([("user_id", ASCENDING)], unique=True)
        await db[BEHAVIOR_PATTERNS].create_index([("user_id", ASCENDING)], unique=True)
        await db[ANALYTICS_EVENTS].create_index([("id", ASCENDING)], unique=True)
        await db[ANALYTICS_EVENTS].create_index([("user_id", ASCENDING), ("timestamp_ms", ASCENDING)])
        await db[ANALYTICS_EVENTS].create_index([("timestamp_ms", ASCENDING)])
        # Mongo sweeps expired cache entries in the background; reads still check expiry
        await db[KV_COLLECTION].create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
        print(f"✅ Indexes created in {settings.mongo_db}")
        print(f"📋 Collections: {await db.list_collection_names()}")
    except Exception as e:
        print(f"❌ Error creating indexes: {e}")
    finally:
        client.close()

if __name__ == "__main__":
    asyncio.run(init_mongo_indexes())
