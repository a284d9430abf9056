"""
Collection Sync Worker

Pulls every collection of one account into the local store. Loads and
restores persisted progress, decides which collections still need
fetching, prefetches metadata, and runs one pagination loop per eligible
collection. A single backoff timer schedules the next resume attempt after
any failure.
"""

import asyncio
import logging
from typing import Callable, Coroutine, Iterable, List, Optional, Set, Tuple

from mailsync.core.backoff import BackoffTimer
from mailsync.core.config import SyncSettings, settings as default_settings
from mailsync.core.persistence import StateWriter
from mailsync.providers.base import (
    CollectionAPI,
    ItemSink,
    PushUpdateConnection,
    RefreshCache,
    StateStore,
    state_key,
)
from mailsync.sync.state import CollectionState, SyncState
from mailsync.workers.metadata import prefetch_metadata
from mailsync.workers.pagination import PaginationEngine

logger = logging.getLogger(__name__)

# Builds the push-update connection from (ready, get_cursor, set_cursor)
PushFactory = Callable[
    [Callable[[], bool], Callable[[], Optional[str]], Callable[[str], None]],
    PushUpdateConnection,
]


class SyncWorker:
    """
    Worker for syncing one account's collections.

    Handles:
    - Restoring persisted progress across restarts
    - Metadata prefetch before each pass
    - Concurrent, independently paginated collection fetches
    - Retrying failed pages at their exact window after backoff
    - Coalesced state persistence
    """

    def __init__(
        self,
        account_id: str,
        api: CollectionAPI,
        store: StateStore,
        organization_unit: str = "folder",
        item_sink: Optional[ItemSink] = None,
        push_factory: Optional[PushFactory] = None,
        caches: Optional[Iterable[RefreshCache]] = None,
        config: Optional[SyncSettings] = None,
    ):
        self.account_id = account_id
        self.api = api
        self.store = store
        self.organization_unit = organization_unit
        self.config = config or default_settings
        self.state_key = state_key(account_id)

        self._state: Optional[SyncState] = None
        self._terminated = False
        self._started = False
        self._resuming = False
        self._resume_requested = False
        # Cuts a prefetch backoff wait short on retry() or cleanup()
        self._retry_wake = asyncio.Event()
        self._load_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

        self.backoff = BackoffTimer(
            self._on_resume_timer,
            base_delay=self.config.backoff_base_delay,
            multiplier=self.config.backoff_multiplier,
            max_delay=self.config.backoff_max_delay,
        )
        self.writer = StateWriter(store, delay=self.config.state_write_delay)
        self.engine = PaginationEngine(
            api=api,
            account_id=account_id,
            backoff=self.backoff,
            get_state=self.collection_state,
            set_state=self._set_collection_state,
            is_terminated=self.is_terminated,
            item_sink=item_sink,
            max_page_size=self.config.max_page_size,
            growth_factor=self.config.page_growth_factor,
            page_interval=self.config.page_interval,
        )
        self.push: Optional[PushUpdateConnection] = None
        if push_factory is not None:
            self.push = push_factory(self.ready, self.get_cursor, self.set_cursor)
        self.caches: List[RefreshCache] = list(caches or [])

    # ==================== Catalog ====================

    @property
    def organization_collection(self) -> str:
        return "labels" if self.organization_unit == "label" else "folders"

    @property
    def catalog(self) -> List[Tuple[str, int]]:
        """Collections fetched by this worker with their first page size."""
        initial = self.config.initial_page_size
        return [
            ("threads", initial),
            (self.organization_collection, self.config.organization_page_size),
            ("drafts", initial),
            ("contacts", initial),
            ("calendars", initial),
            ("events", initial),
        ]

    # ==================== State access ====================

    def ready(self) -> bool:
        """True once persisted state has been loaded."""
        return self._state is not None

    def is_terminated(self) -> bool:
        return self._terminated

    def busy(self) -> bool:
        if self._state is None:
            return False
        return any(cs.busy for cs in self._state.collections.values())

    def collection_state(self, name: str) -> CollectionState:
        if self._state is None:
            return CollectionState()
        return self._state.get(name)

    def state_snapshot(self) -> dict:
        """Persisted-layout snapshot of the sync state."""
        if self._state is None:
            return {}
        return self._state.to_dict()

    def get_cursor(self) -> Optional[str]:
        if self._state is None:
            return None
        return self._state.cursor

    def set_cursor(self, cursor: str):
        if self._terminated or self._state is None:
            return
        self._state.cursor = cursor
        self._write_state()

    def _set_collection_state(self, name: str, collection_state: CollectionState):
        if self._terminated or self._state is None:
            return
        self._state.set(name, collection_state)
        self._write_state()

    def _write_state(self):
        if self._terminated or self._state is None:
            return
        self.writer.schedule(self.state_key, self._state.to_dict())

    # ==================== Lifecycle ====================

    async def load(self):
        """Load persisted state once; later calls wait for the same load."""
        if self._load_task is None:
            self._load_task = asyncio.create_task(self._load_state())
        await self._load_task

    async def _load_state(self):
        try:
            blob = await self.store.load(self.state_key)
        except Exception as e:
            logger.warning(f"Failed to load sync state for {self.account_id}, starting fresh: {e}")
            blob = None

        if self._terminated:
            return

        state = SyncState.from_dict(blob)
        # Nothing can still be in flight from a previous process
        cleared = state.clear_busy()
        self._state = state

        logger.info(
            f"Loaded sync state for {self.account_id}: "
            f"{len(state.collections)} collections, cleared {cleared} busy flags"
        )
        if cleared:
            self._write_state()

    async def start(self):
        """Start syncing. Calling start() again is a no-op."""
        if self._started or self._terminated:
            return
        self._started = True
        logger.info(f"Starting sync worker for {self.account_id}")

        if self.push is not None:
            await self.push.start()
        for cache in self.caches:
            cache.start()

        self.backoff.start()
        await self.load()
        await self.resume_fetches()

    async def cleanup(self):
        """Stop the worker for good. No state changes or writes happen afterwards."""
        if self._terminated:
            return
        self._terminated = True

        self.backoff.cancel()
        self.writer.cancel()
        self._retry_wake.set()

        if self.push is not None:
            await self.push.stop()
        for cache in self.caches:
            cache.end()

        logger.info(f"Sync worker for {self.account_id} cleaned up")

    # ==================== Fetching ====================

    async def resume_fetches(self):
        """
        Start fetching every collection that is neither complete nor busy.

        Runs the metadata prefetch first since every page request carries
        its index. A call made while another pass is still prefetching is
        deferred: the running pass starts one more pass once it has
        launched its own collections.
        """
        self.backoff.cancel()

        if self._terminated or self._state is None:
            return
        if self._resuming:
            self._resume_requested = True
            return

        self._resuming = True
        try:
            while True:
                self._resume_requested = False
                await self._run_pass()
                if not self._resume_requested or self._terminated:
                    break
                self.backoff.cancel()
        finally:
            self._resuming = False
            self._resume_requested = False

    async def _run_pass(self):
        eligible = [
            (name, page_size) for name, page_size in self.catalog
            if self.collection_state(name).eligible
        ]
        if not eligible:
            return

        logger.info(f"Resuming fetches: {', '.join(name for name, _ in eligible)}")

        self._retry_wake.clear()
        metadata = await prefetch_metadata(
            self.api,
            self.backoff,
            page_size=self.config.metadata_page_size,
            is_terminated=self.is_terminated,
            wake=self._retry_wake,
        )

        if metadata is None or self._terminated:
            return

        for name, page_size in eligible:
            request_range = self.engine.begin_collection(name, page_size)
            if request_range is not None:
                self._spawn(self.engine.fetch_pages(name, request_range, metadata))

    async def retry(self):
        """Retry immediately, skipping any pending backoff wait."""
        logger.info(f"Retry requested for {self.account_id}")
        self.backoff.reset()
        self._retry_wake.set()
        await self.resume_fetches()

    def _on_resume_timer(self):
        if self._terminated:
            return
        self._spawn(self.resume_fetches())

    def _spawn(self, coro: Coroutine):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Sync task failed: {exc}", exc_info=exc)

    async def wait_idle(self):
        """Wait until no fetch or count task is running."""
        while self._tasks or self.engine.count_tasks:
            await asyncio.gather(
                *self._tasks, *self.engine.count_tasks, return_exceptions=True
            )
