"""
Coalescing state writer.

Debounces full-state writes to the durable store. A burst of updates
produces one write carrying the latest snapshot. Per key there is at most
one pending write and at most one write in flight.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from mailsync.providers.base import StateStore

logger = logging.getLogger(__name__)


class StateWriter:
    """Trailing-debounce write queue in front of a StateStore."""

    def __init__(self, store: StateStore, delay: float = 0.1):
        self.store = store
        self.delay = delay
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._closed = False
        self.writes = 0

    def has_pending(self, key: Optional[str] = None) -> bool:
        if key is None:
            return bool(self._pending) or bool(self._inflight)
        return key in self._pending or key in self._inflight

    def schedule(self, key: str, snapshot: Dict[str, Any]):
        """Queue a snapshot for key, replacing any queued one."""
        if self._closed:
            return
        self._pending[key] = snapshot
        if key in self._inflight:
            # Picked up when the running write finishes
            return
        self._arm(key)

    def _arm(self, key: str):
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.delay, self._begin_write, key)

    def _begin_write(self, key: str):
        self._timers.pop(key, None)
        if self._closed or key in self._inflight:
            return
        snapshot = self._pending.pop(key, None)
        if snapshot is None:
            return
        self._inflight[key] = asyncio.create_task(self._write(key, snapshot))

    async def _write(self, key: str, snapshot: Dict[str, Any]):
        try:
            await self.store.persist(key, snapshot)
            self.writes += 1
        except Exception as e:
            logger.error(f"Failed to persist {key}: {e}", exc_info=True)
        finally:
            self._inflight.pop(key, None)
            if not self._closed and key in self._pending:
                self._arm(key)

    async def flush(self):
        """Write every queued snapshot now and wait for writes to finish."""
        for key in list(self._timers):
            self._timers.pop(key).cancel()

        for key in list(self._pending):
            inflight = self._inflight.get(key)
            if inflight is not None:
                await inflight
                timer = self._timers.pop(key, None)
                if timer is not None:
                    timer.cancel()
            self._begin_write(key)

        if self._inflight:
            await asyncio.gather(*self._inflight.values())

    def cancel(self):
        """Discard queued snapshots and accept no more."""
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._pending.clear()
