"""
Test configuration for the sync engine.

In-memory collaborators standing in for the remote API, the durable store
and the push-update connection.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional

import pytest

from mailsync.core.config import SyncSettings
from mailsync.providers.base import (
    CollectionAPI,
    ItemSink,
    PushUpdateConnection,
    RefreshCache,
    StateStore,
)
from mailsync.sync.state import MetadataIndex, RequestRange


def make_items(prefix: str, count: int) -> List[Dict[str, Any]]:
    return [{"id": f"{prefix}_{i}", "name": f"{prefix} {i}"} for i in range(count)]


def make_folders(count: int, with_inbox: bool = True) -> List[Dict[str, Any]]:
    folders = [{"id": f"folder_{i}", "name": f"Folder {i}", "role": None} for i in range(count)]
    if with_inbox and folders:
        folders[0] = {"id": "folder_inbox", "name": "Inbox", "role": "inbox"}
    return folders


class FakeCollectionAPI(CollectionAPI):
    """Serves fixed item lists and raises queued failures first."""

    def __init__(
        self,
        collections: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        metadata_records: Optional[List[Dict[str, Any]]] = None,
        supports_metadata: bool = False,
    ):
        self.collections = collections or {}
        self.metadata_records = metadata_records or []
        self._supports_metadata = supports_metadata
        self.failures: Dict[str, List[Exception]] = {}
        self.page_responses: Dict[str, List[List[Dict[str, Any]]]] = {}
        self.requests: List[tuple] = []
        self.metadata_requests: List[tuple] = []
        self.count_requests: List[str] = []
        self.metadata_seen: List[MetadataIndex] = []
        self.gate: Optional[asyncio.Event] = None
        self.page_gates: Dict[str, asyncio.Event] = {}
        self.metadata_gate: Optional[asyncio.Event] = None

    @property
    def supports_metadata(self) -> bool:
        return self._supports_metadata

    def fail_next(self, collection: str, error: Exception):
        self.failures.setdefault(collection, []).append(error)

    def respond_next(self, collection: str, items: List[Dict[str, Any]]):
        self.page_responses.setdefault(collection, []).append(items)

    def requested(self, collection: str) -> List[RequestRange]:
        return [r for name, r in self.requests if name == collection]

    async def get_count(self, collection: str) -> int:
        self.count_requests.append(collection)
        return len(self.collections.get(collection, []))

    async def get_page(
        self,
        account_id: str,
        collection: str,
        request_range: RequestRange,
        metadata: MetadataIndex,
    ) -> List[Dict[str, Any]]:
        self.requests.append((collection, request_range))
        self.metadata_seen.append(metadata)
        if collection in self.page_gates:
            await self.page_gates[collection].wait()
        elif self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)

        queued = self.failures.get(collection)
        if queued:
            raise queued.pop(0)

        responses = self.page_responses.get(collection)
        if responses:
            return copy.deepcopy(responses.pop(0))

        items = self.collections.get(collection, [])
        end = request_range.offset + request_range.limit
        return copy.deepcopy(items[request_range.offset:end])

    async def get_metadata_page(self, offset: int, limit: int) -> List[Dict[str, Any]]:
        self.metadata_requests.append((offset, limit))
        if self.metadata_gate is not None:
            await self.metadata_gate.wait()
        queued = self.failures.get("metadata")
        if queued:
            raise queued.pop(0)
        return copy.deepcopy(self.metadata_records[offset:offset + limit])


class MemoryStateStore(StateStore):
    """Records every persisted blob."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        self.blobs: Dict[str, Dict[str, Any]] = copy.deepcopy(initial or {})
        self.writes: List[tuple] = []
        self.fail_load = False

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        if self.fail_load:
            raise ConnectionError("store unavailable")
        blob = self.blobs.get(key)
        return copy.deepcopy(blob) if blob is not None else None

    async def persist(self, key: str, blob: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self.blobs[key] = copy.deepcopy(blob)
        self.writes.append((key, copy.deepcopy(blob)))


class MemoryItemSink(ItemSink):
    def __init__(self):
        self.saved: Dict[str, List[Dict[str, Any]]] = {}

    async def save_items(self, collection: str, items: List[Dict[str, Any]]) -> None:
        self.saved.setdefault(collection, []).extend(items)


class FakePushConnection(PushUpdateConnection):
    def __init__(self, ready, get_cursor, set_cursor):
        super().__init__(ready, get_cursor, set_cursor)
        self.started = 0
        self.stopped = 0

    async def start(self) -> None:
        self.started += 1

    async def stop(self) -> None:
        self.stopped += 1

    def is_ready(self) -> bool:
        return self._ready()

    def push_cursor(self, cursor: str):
        self._set_cursor(cursor)

    def current_cursor(self):
        return self._get_cursor()


class FakeRefreshCache(RefreshCache):
    def __init__(self):
        self.started = 0
        self.ended = 0

    def start(self) -> None:
        self.started += 1

    def end(self) -> None:
        self.ended += 1


def full_catalog(threads: int = 40, folders: int = 5) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "threads": make_items("thread", threads),
        "folders": make_folders(folders),
        "drafts": make_items("draft", 3),
        "contacts": make_items("contact", 75),
        "calendars": make_items("calendar", 2),
        "events": make_items("event", 31),
    }


@pytest.fixture
def fast_settings() -> SyncSettings:
    """Settings with no page throttling and a short write debounce."""
    return SyncSettings(
        account_id="acct_1",
        page_interval=0.0,
        state_write_delay=0.01,
    )


@pytest.fixture
def fake_api() -> FakeCollectionAPI:
    return FakeCollectionAPI(full_catalog())


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def item_sink() -> MemoryItemSink:
    return MemoryItemSink()
