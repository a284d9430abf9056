"""Sync state types."""

from mailsync.sync.state import (
    CollectionStatus,
    CollectionState,
    RequestRange,
    SyncState,
    MetadataIndex,
)

__all__ = [
    "CollectionStatus",
    "CollectionState",
    "RequestRange",
    "SyncState",
    "MetadataIndex",
]
