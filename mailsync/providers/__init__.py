"""
Collaborator Providers Package

Interfaces the sync worker talks to and their concrete implementations:
- Remote collection API (HTTP via httpx)
- Push-update connection (delta polling)
- Durable state store and local item sink (see mailsync.core.database)
"""

from mailsync.providers.base import (
    CollectionAPI,
    StateStore,
    ItemSink,
    PushUpdateConnection,
    RefreshCache,
    SyncError,
    TransportError,
    SemanticValidationError,
)

__all__ = [
    "CollectionAPI",
    "StateStore",
    "ItemSink",
    "PushUpdateConnection",
    "RefreshCache",
    "SyncError",
    "TransportError",
    "SemanticValidationError",
]
