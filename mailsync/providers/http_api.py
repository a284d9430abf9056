"""
HTTP Collection API

Talks to the remote collection API over HTTP using httpx.

Features:
- Offset/limit pagination for every collection
- Separate expanded endpoint for threads
- Count and metadata side endpoints
- Cursor-based delta polling for incremental updates
"""

import asyncio
import copy
import logging
from typing import Optional, List, Dict, Any, Callable, Awaitable

import httpx

from mailsync.providers.base import (
    CollectionAPI,
    PushUpdateConnection,
    TransportError,
)
from mailsync.sync.state import MetadataIndex, RequestRange

logger = logging.getLogger(__name__)

# Callback type for delta batches: (deltas) -> None
DeltaHandler = Callable[[List[Dict[str, Any]]], Awaitable[None]]


class HttpCollectionAPI(CollectionAPI):
    """
    Remote collection API over HTTP.

    Any connection error or non-200 response is raised as ``TransportError``.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 60.0,
        supports_metadata: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._supports_metadata = supports_metadata
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def supports_metadata(self) -> bool:
        return self._supports_metadata

    async def _get_json(self, path: str, params: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = await self._client.get(path, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"{path}: {e}") from e

        if response.status_code != 200:
            raise TransportError(
                f"{path}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{path}: invalid JSON response") from e

    async def get_count(self, collection: str) -> int:
        data = await self._get_json(f"/{collection}", {"view": "count"})
        return int(data.get("count", 0))

    async def get_page(
        self,
        account_id: str,
        collection: str,
        request_range: RequestRange,
        metadata: MetadataIndex,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page and attach metadata records to each item.

        Threads use the expanded thread endpoint; everything else shares
        the plain collection endpoint.
        """
        params: Dict[str, Any] = {
            "offset": request_range.offset,
            "limit": request_range.limit,
        }
        if collection == "threads":
            params["view"] = "expanded"

        items = await self._get_json(
            f"/{collection}",
            params,
            headers={"X-Account-Id": account_id},
        )
        if not isinstance(items, list):
            raise TransportError(f"/{collection}: expected a list of items")

        for item in items:
            records = metadata.get(str(item.get("id", "")))
            if records:
                item["metadata"] = [copy.deepcopy(dict(record)) for record in records]

        return items

    async def get_metadata_page(self, offset: int, limit: int) -> List[Dict[str, Any]]:
        if not self._supports_metadata:
            raise NotImplementedError("Metadata not supported by this backend")
        records = await self._get_json("/metadata", {"offset": offset, "limit": limit})
        if not isinstance(records, list):
            raise TransportError("/metadata: expected a list of records")
        return records

    async def get_deltas(self, cursor: Optional[str]) -> Dict[str, Any]:
        """Get changes since cursor. Returns {"deltas": [...], "cursor": str}."""
        params = {"cursor": cursor} if cursor else {}
        data = await self._get_json("/delta", params)
        if not isinstance(data, dict):
            raise TransportError("/delta: expected an object")
        return data

    async def close(self) -> None:
        await self._client.aclose()


class PollingDeltaStream(PushUpdateConnection):
    """
    Push-update connection that polls the delta endpoint.

    Does nothing until the worker reports ready, then advances the cursor
    held in the worker's sync state.
    """

    def __init__(
        self,
        api: HttpCollectionAPI,
        ready: Callable[[], bool],
        get_cursor: Callable[[], Optional[str]],
        set_cursor: Callable[[str], None],
        on_deltas: Optional[DeltaHandler] = None,
        poll_interval: float = 30.0,
    ):
        super().__init__(ready, get_cursor, set_cursor)
        self.api = api
        self.poll_interval = poll_interval
        self._on_deltas = on_deltas
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Delta poller exited with error: {e}")
        self._task = None

    async def poll_once(self) -> int:
        """Fetch one batch of deltas. Returns the number received."""
        if not self._ready():
            return 0

        data = await self.api.get_deltas(self._get_cursor())
        deltas = data.get("deltas", [])

        if deltas and self._on_deltas:
            await self._on_deltas(deltas)

        next_cursor = data.get("cursor")
        if next_cursor and next_cursor != self._get_cursor():
            self._set_cursor(next_cursor)

        return len(deltas)

    async def _run(self):
        while True:
            try:
                received = await self.poll_once()
                if received:
                    logger.debug(f"Received {received} deltas")
            except TransportError as e:
                logger.warning(f"Delta poll failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error in delta poll: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)
