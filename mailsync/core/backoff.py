"""
Shared retry timer.

A single re-armable, one-shot timer per account. Any failure anywhere grows
the delay before the next global resume attempt.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_BASE_DELAY = 20.0
DEFAULT_MULTIPLIER = 1.4
DEFAULT_MAX_DELAY = 300.0


class BackoffTimer:
    """
    One-shot delay scheduler with multiplicative growth and a ceiling.

    At most one schedule is pending at a time. ``backoff()`` only grows the
    delay; callers must call ``start()`` to arm the timer.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        base_delay: float = DEFAULT_BASE_DELAY,
        multiplier: float = DEFAULT_MULTIPLIER,
        max_delay: float = DEFAULT_MAX_DELAY,
    ):
        self._callback = callback
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.delay = base_delay
        self._pending: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        """True while a schedule is armed."""
        return self._pending is not None

    def start(self):
        """Arm the timer to fire after the current delay."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.call_later(self.delay, self._fire)
        logger.debug(f"Resume timer armed for {self.delay:.1f}s")

    def backoff(self):
        """Grow the delay. Does not reschedule."""
        self.delay = min(self.delay * self.multiplier, self.max_delay)

    def reset(self):
        """Cancel any pending schedule and restore the base delay."""
        self.cancel()
        self.delay = self.base_delay

    def cancel(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _fire(self):
        self._pending = None
        self._callback()
