"""Database connection manager and MongoDB-backed stores."""

import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import UpdateOne

from mailsync.core.config import settings
from mailsync.providers.base import ItemSink, StateStore

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Async MongoDB connection manager."""

    def __init__(self, uri: Optional[str] = None, database: Optional[str] = None):
        self.uri = uri or settings.mongodb_uri
        self.database = database or settings.mongodb_database
        self.client: Optional[AsyncIOMotorClient] = None
        self.db = None

    async def connect(self):
        """Establish database connection."""
        try:
            if self.client is None:
                self.client = AsyncIOMotorClient(self.uri)
                # Test connection
                await self.client.admin.command('ping')

            self.db = self.client[self.database]
            logger.info(f"Connected to MongoDB: {self.database}")

        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def disconnect(self):
        """Close database connection."""
        if self.client:
            self.client.close()
            self.client = None
            self.db = None
            logger.info("MongoDB connection closed")


class MongoStateStore(StateStore):
    """
    Sync state persisted as one document per key.

    Writes replace the whole document with a single upsert, which MongoDB
    applies atomically.
    """

    def __init__(self, db, collection: Optional[str] = None):
        self.collection = db[collection or settings.mongodb_collection_state]

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one({"_id": key})
        if doc is None:
            return None
        return doc.get("state") or {}

    async def persist(self, key: str, blob: Dict[str, Any]) -> None:
        await self.collection.update_one(
            {"_id": key},
            {"$set": {"state": blob}},
            upsert=True,
        )


class MongoItemStore(ItemSink):
    """Fetched items upserted by id into one collection per remote collection."""

    def __init__(self, db, prefix: Optional[str] = None):
        self.db = db
        self.prefix = prefix if prefix is not None else settings.mongodb_items_prefix

    async def save_items(self, collection: str, items: List[Dict[str, Any]]) -> None:
        operations = [
            UpdateOne({"_id": item["id"]}, {"$set": item}, upsert=True)
            for item in items
            if item.get("id") is not None
        ]
        if not operations:
            return
        await self.db[f"{self.prefix}{collection}"].bulk_write(operations, ordered=False)
