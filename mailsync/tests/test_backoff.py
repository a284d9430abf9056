"""Unit tests for the shared backoff timer."""

import asyncio

import pytest
from unittest.mock import MagicMock

from mailsync.core.backoff import BackoffTimer


class TestBackoffDelay:
    """Tests for delay growth."""

    def test_initial_delay(self):
        timer = BackoffTimer(MagicMock())

        assert timer.delay == 20.0
        assert timer.pending is False

    @pytest.mark.parametrize("n", range(0, 12))
    def test_delay_after_n_backoffs(self, n):
        timer = BackoffTimer(MagicMock())
        timer.reset()

        for _ in range(n):
            timer.backoff()

        assert timer.delay == pytest.approx(min(20.0 * 1.4 ** n, 300.0))

    def test_delay_capped(self):
        timer = BackoffTimer(MagicMock())

        for _ in range(50):
            timer.backoff()

        assert timer.delay == 300.0

    def test_backoff_does_not_schedule(self):
        callback = MagicMock()
        timer = BackoffTimer(callback)

        timer.backoff()

        assert timer.pending is False
        callback.assert_not_called()

    def test_cancel_without_schedule_is_noop(self):
        timer = BackoffTimer(MagicMock())
        timer.cancel()
        assert timer.pending is False


class TestBackoffScheduling:
    """Tests for arming, firing and resetting."""

    @pytest.mark.asyncio
    async def test_start_fires_callback_once(self):
        callback = MagicMock()
        timer = BackoffTimer(callback, base_delay=0.01)

        timer.start()
        assert timer.pending is True

        await asyncio.sleep(0.05)

        callback.assert_called_once()
        assert timer.pending is False

    @pytest.mark.asyncio
    async def test_restart_keeps_single_schedule(self):
        callback = MagicMock()
        timer = BackoffTimer(callback, base_delay=0.01)

        timer.start()
        timer.start()
        timer.start()
        await asyncio.sleep(0.05)

        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_reset_restores_base_and_cancels(self):
        callback = MagicMock()
        timer = BackoffTimer(callback, base_delay=0.01)
        timer.backoff()
        timer.backoff()
        timer.start()

        timer.reset()
        await asyncio.sleep(0.05)

        assert timer.delay == 0.01
        assert timer.pending is False
        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_prevents_fire(self):
        callback = MagicMock()
        timer = BackoffTimer(callback, base_delay=0.01)

        timer.start()
        timer.cancel()
        await asyncio.sleep(0.05)

        callback.assert_not_called()
