"""Metadata prefetch run once at the start of every sync pass."""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from mailsync.core.backoff import BackoffTimer
from mailsync.providers.base import CollectionAPI, TransportError
from mailsync.sync.state import EMPTY_METADATA, MetadataIndex, freeze_metadata

logger = logging.getLogger(__name__)


async def _wait(delay: float, wake: Optional[asyncio.Event]):
    """Sleep for delay, returning early once wake is set."""
    if wake is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(wake.wait(), delay)
    except asyncio.TimeoutError:
        return
    wake.clear()


async def prefetch_metadata(
    api: CollectionAPI,
    backoff: BackoffTimer,
    page_size: int = 200,
    is_terminated: Callable[[], bool] = lambda: False,
    wake: Optional[asyncio.Event] = None,
) -> Optional[MetadataIndex]:
    """
    Build the metadata index for a pass.

    Pages through the metadata endpoint until a short page comes back.
    Any failure grows the shared backoff delay, waits it out and
    re-requests the same offset; records already collected are kept.
    Setting ``wake`` cuts the current wait short.

    Returns:
        Read-only index keyed by object id, or None if the worker was
        terminated meanwhile
    """
    if not api.supports_metadata:
        return EMPTY_METADATA

    index: Dict[str, List[Dict[str, Any]]] = {}
    offset = 0

    while True:
        if is_terminated():
            return None

        try:
            records = await api.get_metadata_page(offset, page_size)
            page: Dict[str, List[Dict[str, Any]]] = {}
            for record in records:
                object_id = record.get("object_id")
                if object_id is None:
                    continue
                page.setdefault(str(object_id), []).append(record)
        except TransportError as e:
            backoff.backoff()
            logger.warning(
                f"Metadata page at offset {offset} failed, retrying in {backoff.delay:.1f}s: {e}"
            )
            await _wait(backoff.delay, wake)
            continue
        except Exception as e:
            backoff.backoff()
            logger.error(
                f"Unexpected error prefetching metadata at offset {offset}, "
                f"retrying in {backoff.delay:.1f}s: {e}",
                exc_info=True,
            )
            await _wait(backoff.delay, wake)
            continue

        if is_terminated():
            return None

        for object_id, object_records in page.items():
            index.setdefault(object_id, []).extend(object_records)

        if len(records) < page_size:
            break
        offset += len(records)

    logger.info(f"Prefetched metadata for {len(index)} objects")
    return freeze_metadata(index)
