"""Tests for the MongoDB-backed state and item stores (motor mocked)."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from mailsync.core.database import MongoItemStore, MongoStateStore


def make_db():
    collections = {}

    def get_collection(name):
        if name not in collections:
            collection = MagicMock()
            collection.find_one = AsyncMock(return_value=None)
            collection.update_one = AsyncMock()
            collection.bulk_write = AsyncMock()
            collections[name] = collection
        return collections[name]

    db = MagicMock()
    db.__getitem__.side_effect = get_collection
    return db, collections


class TestMongoStateStore:

    @pytest.mark.asyncio
    async def test_load_missing_returns_none(self):
        db, _ = make_db()
        store = MongoStateStore(db, "sync_state")

        assert await store.load("sync_state:acct_1") is None

    @pytest.mark.asyncio
    async def test_load_returns_state_field(self):
        db, collections = make_db()
        store = MongoStateStore(db, "sync_state")
        collections["sync_state"].find_one.return_value = {
            "_id": "sync_state:acct_1",
            "state": {"threads": {"complete": True}},
        }

        blob = await store.load("sync_state:acct_1")

        assert blob == {"threads": {"complete": True}}
        collections["sync_state"].find_one.assert_awaited_once_with({"_id": "sync_state:acct_1"})

    @pytest.mark.asyncio
    async def test_persist_is_single_upsert(self):
        db, collections = make_db()
        store = MongoStateStore(db, "sync_state")

        await store.persist("sync_state:acct_1", {"cursor": "c_1"})

        collections["sync_state"].update_one.assert_awaited_once_with(
            {"_id": "sync_state:acct_1"},
            {"$set": {"state": {"cursor": "c_1"}}},
            upsert=True,
        )


class TestMongoItemStore:

    @pytest.mark.asyncio
    async def test_items_upserted_by_id(self):
        db, collections = make_db()
        store = MongoItemStore(db, prefix="items_")

        await store.save_items("contacts", [{"id": "c1"}, {"name": "no id"}, {"id": "c2"}])

        bulk_write = collections["items_contacts"].bulk_write
        bulk_write.assert_awaited_once()
        operations = bulk_write.await_args.args[0]
        assert len(operations) == 2
        assert bulk_write.await_args.kwargs == {"ordered": False}

    @pytest.mark.asyncio
    async def test_empty_page_writes_nothing(self):
        db, collections = make_db()
        store = MongoItemStore(db, prefix="items_")

        await store.save_items("drafts", [])

        assert "items_drafts" not in collections
