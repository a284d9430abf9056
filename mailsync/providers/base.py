"""
Collaborator Interfaces and Errors

This module defines the abstract interfaces the sync worker depends on
(remote collection API, durable state store, local item sink, push-update
connection, refresh caches) along with the sync error taxonomy.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import logging

from mailsync.sync.state import MetadataIndex, RequestRange

logger = logging.getLogger(__name__)


# Collections whose first page must include the inbox record
ORGANIZATION_COLLECTIONS = ("folders", "labels")


class CollectionAPI(ABC):
    """
    Remote API serving paginated collections for one account.

    Every call delivers exactly one outcome: a result or a raised
    ``TransportError``.
    """

    @property
    def supports_metadata(self) -> bool:
        """Whether the backend exposes the metadata side endpoint."""
        return False

    @abstractmethod
    async def get_count(self, collection: str) -> int:
        """
        Get the remote total for a collection.

        Raises:
            TransportError: On network or HTTP failure
        """
        pass

    @abstractmethod
    async def get_page(
        self,
        account_id: str,
        collection: str,
        request_range: RequestRange,
        metadata: MetadataIndex,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of a collection.

        Args:
            account_id: Account the page belongs to
            collection: Collection name
            request_range: Offset and limit of the page
            metadata: Metadata index of the current pass

        Returns:
            Up to ``request_range.limit`` items

        Raises:
            TransportError: On network or HTTP failure
        """
        pass

    async def get_metadata_page(self, offset: int, limit: int) -> List[Dict[str, Any]]:
        """
        Fetch one page of metadata records.

        Each record carries the ``object_id`` it belongs to.
        """
        raise NotImplementedError("Metadata not supported by this backend")

    async def close(self) -> None:
        """Clean up any resources (HTTP clients, etc.)."""
        pass


class StateStore(ABC):
    """Durable key/value store for persisted sync state."""

    @abstractmethod
    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Load a blob, or None when absent."""
        pass

    @abstractmethod
    async def persist(self, key: str, blob: Dict[str, Any]) -> None:
        """Replace the blob stored under key."""
        pass


class ItemSink(ABC):
    """Local store receiving fetched collection items."""

    @abstractmethod
    async def save_items(self, collection: str, items: List[Dict[str, Any]]) -> None:
        pass


class PushUpdateConnection(ABC):
    """
    Long-lived connection streaming incremental changes.

    Constructed with the worker's readiness predicate and cursor accessors.
    Its lifecycle follows the worker's start/cleanup.
    """

    def __init__(
        self,
        ready: Callable[[], bool],
        get_cursor: Callable[[], Optional[str]],
        set_cursor: Callable[[str], None],
    ):
        self._ready = ready
        self._get_cursor = get_cursor
        self._set_cursor = set_cursor

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass


class RefreshCache(ABC):
    """Auxiliary cache whose lifecycle is tied to the worker."""

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def end(self) -> None:
        pass


# ==================== Custom Exceptions ====================

class SyncError(Exception):
    """Base exception for sync operations."""
    pass


class TransportError(SyncError):
    """Network or HTTP failure talking to the remote API."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SemanticValidationError(SyncError):
    """Structurally valid response violating a domain invariant."""
    pass


def state_key(account_id: str) -> str:
    """Store key for an account's sync state."""
    return f"sync_state:{account_id}"
