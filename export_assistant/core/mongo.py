from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from export_assistant.core.config import settings


def create_mongo_client(url: str = None) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url or settings.mongo_url)


def get_mongo_db(client: AsyncIOMotorClient, name: str = None) -> AsyncIOMotorDatabase:
    return client[name or settings.mongo_db]
