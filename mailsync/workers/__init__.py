"""
Collection sync workers module.

This module provides the background worker that pages every collection of
an account into the local store.
"""

from mailsync.workers.sync_worker import SyncWorker

__all__ = ["SyncWorker"]
