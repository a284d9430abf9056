"""
Per-collection pagination.

Drives one collection's fetch-page / advance / fail loop. Pages of one
collection are strictly sequential: the next request is only issued once
the previous page's outcome has been applied to the sync state.

Page sizes start small for quick visible progress, grow by 1.5x per page
and are capped at 200. Consecutive requests are spaced at least
``page_interval`` seconds apart.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from mailsync.core.backoff import BackoffTimer
from mailsync.providers.base import (
    CollectionAPI,
    ItemSink,
    ORGANIZATION_COLLECTIONS,
    SemanticValidationError,
    TransportError,
)
from mailsync.sync.state import CollectionState, MetadataIndex, RequestRange

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGE_SIZE = 200
DEFAULT_GROWTH_FACTOR = 1.5
DEFAULT_PAGE_INTERVAL = 1.5


def next_page_size(
    limit: int,
    growth: float = DEFAULT_GROWTH_FACTOR,
    maximum: int = DEFAULT_MAX_PAGE_SIZE,
) -> int:
    """Grow a page size, rounding half up: 30, 45, 68, 102, 153, 200, ..."""
    return min(int(limit * growth + 0.5), maximum)


def has_inbox(items: List[Dict[str, Any]]) -> bool:
    for item in items:
        if item.get("role") == "inbox":
            return True
        if str(item.get("name") or "").lower() == "inbox":
            return True
    return False


class PaginationEngine:
    """
    Fetches collections page by page on behalf of the sync worker.

    The engine never holds sync state itself; it reads and replaces
    collection records through the worker's accessors, and every
    continuation checks the worker's termination token first.
    """

    def __init__(
        self,
        api: CollectionAPI,
        account_id: str,
        backoff: BackoffTimer,
        get_state: Callable[[str], CollectionState],
        set_state: Callable[[str, CollectionState], None],
        is_terminated: Callable[[], bool],
        item_sink: Optional[ItemSink] = None,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE,
        growth_factor: float = DEFAULT_GROWTH_FACTOR,
        page_interval: float = DEFAULT_PAGE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.account_id = account_id
        self.backoff = backoff
        self.item_sink = item_sink
        self.max_page_size = max_page_size
        self.growth_factor = growth_factor
        self.page_interval = page_interval
        self._get_state = get_state
        self._set_state = set_state
        self._is_terminated = is_terminated
        self._clock = clock
        self.count_tasks: Set[asyncio.Task] = set()

    async def fetch_collection(
        self,
        name: str,
        initial_page_size: int,
        metadata: MetadataIndex,
    ):
        """
        Fetch a collection until it completes or a page fails.

        Resumes at the exact window of a previously failed page when one
        is recorded.
        """
        request_range = self.begin_collection(name, initial_page_size)
        if request_range is not None:
            await self.fetch_pages(name, request_range, metadata)

    def begin_collection(self, name: str, initial_page_size: int) -> Optional[RequestRange]:
        """
        Mark a collection busy and pick its first page.

        Synchronous so the busy flag is visible before any other coroutine
        runs. Returns None when there is nothing to fetch.
        """
        if self._is_terminated():
            return None

        state = self._get_state(name)
        if state.complete:
            return None

        request_range = state.error_request_range or RequestRange(0, initial_page_size)
        self._set_state(name, state.fetching())

        if not state.count_known:
            task = asyncio.create_task(self._fetch_count(name))
            self.count_tasks.add(task)
            task.add_done_callback(self.count_tasks.discard)

        logger.debug(
            f"Fetching {name} from offset {request_range.offset} (limit {request_range.limit})"
        )
        return request_range

    async def fetch_pages(
        self,
        name: str,
        request_range: RequestRange,
        metadata: MetadataIndex,
    ):
        """Fetch pages sequentially starting at request_range."""
        next_range: Optional[RequestRange] = request_range
        while next_range is not None:
            next_range = await self.fetch_page(name, next_range, metadata)

    async def fetch_page(
        self,
        name: str,
        request_range: RequestRange,
        metadata: MetadataIndex,
    ) -> Optional[RequestRange]:
        """
        Fetch one page and apply its outcome.

        Returns:
            The next page to request, or None when the collection is
            complete, failed, or the worker was terminated
        """
        started = self._clock()

        try:
            items = await self.api.get_page(self.account_id, name, request_range, metadata)
            self._validate(name, request_range, items)
            if items and self.item_sink and not self._is_terminated():
                await self.item_sink.save_items(name, items)
        except (TransportError, SemanticValidationError) as e:
            self._on_failure(name, request_range, e)
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching {name}: {e}", exc_info=True)
            self._on_failure(name, request_range, e)
            return None

        if self._is_terminated():
            logger.debug(f"Ignoring {name} page received after cleanup")
            return None

        received = len(items)
        more_to_fetch = received == request_range.limit
        fetched = request_range.offset + received

        self._set_state(name, self._get_state(name).page_received(fetched, more_to_fetch))

        if not more_to_fetch:
            logger.info(f"Finished fetching {name}: {fetched} items")
            return None

        wait = max(0.0, self.page_interval - (self._clock() - started))
        if wait > 0:
            await asyncio.sleep(wait)
            if self._is_terminated():
                return None

        return RequestRange(
            offset=fetched,
            limit=next_page_size(request_range.limit, self.growth_factor, self.max_page_size),
        )

    def _validate(self, name: str, request_range: RequestRange, items: List[Dict[str, Any]]):
        # The remote occasionally omits the inbox from an otherwise valid listing
        if name in ORGANIZATION_COLLECTIONS and request_range.offset == 0 and not has_inbox(items):
            raise SemanticValidationError(f"{name} response is missing the inbox")

    def _on_failure(self, name: str, request_range: RequestRange, error: Exception):
        if self._is_terminated():
            logger.debug(f"Ignoring {name} failure after cleanup: {error}")
            return

        message = str(error) or type(error).__name__
        self._set_state(name, self._get_state(name).failed(message, request_range))
        self.backoff.backoff()
        self.backoff.start()
        logger.warning(
            f"Fetching {name} failed at offset {request_range.offset} "
            f"(limit {request_range.limit}), retrying in {self.backoff.delay:.1f}s: {error}"
        )

    async def _fetch_count(self, name: str):
        try:
            count = await self.api.get_count(name)
        except Exception as e:
            logger.warning(f"Could not get count for {name}: {e}")
            return

        if self._is_terminated():
            return
        self._set_state(name, self._get_state(name).with_count(count))
