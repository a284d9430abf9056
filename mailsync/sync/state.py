"""
Sync state types.

Per-collection progress records and the top-level persisted sync state for
one account. Collection records are immutable; every transition returns a
new record so snapshots handed to collaborators never change underneath them.
"""

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


class CollectionStatus(str, Enum):
    """Status of one collection's pagination."""
    IDLE = "idle"
    FETCHING = "fetching"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class RequestRange:
    """One page request window."""
    offset: int
    limit: int

    def to_dict(self) -> Dict[str, int]:
        return {"offset": self.offset, "limit": self.limit}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["RequestRange"]:
        if not data:
            return None
        return cls(offset=int(data["offset"]), limit=int(data["limit"]))


@dataclass(frozen=True)
class CollectionState:
    """
    Progress record for a single collection.

    ``error`` and ``error_request_range`` are only populated in FAILED, and
    always together.
    """
    status: CollectionStatus = CollectionStatus.IDLE
    error: Optional[str] = None
    error_request_range: Optional[RequestRange] = None
    count: Optional[int] = None  # Best-effort remote total, None = unknown
    fetched: int = 0

    @property
    def busy(self) -> bool:
        return self.status == CollectionStatus.FETCHING

    @property
    def complete(self) -> bool:
        return self.status == CollectionStatus.COMPLETE

    @property
    def eligible(self) -> bool:
        """Whether a resume pass should start this collection."""
        return self.status in (CollectionStatus.IDLE, CollectionStatus.FAILED)

    def fetching(self) -> "CollectionState":
        return replace(
            self,
            status=CollectionStatus.FETCHING,
            error=None,
            error_request_range=None,
        )

    def page_received(self, fetched: int, more_to_fetch: bool) -> "CollectionState":
        return replace(
            self,
            status=CollectionStatus.FETCHING if more_to_fetch else CollectionStatus.COMPLETE,
            error=None,
            error_request_range=None,
            fetched=fetched,
        )

    def failed(self, error: str, request_range: RequestRange) -> "CollectionState":
        return replace(
            self,
            status=CollectionStatus.FAILED,
            error=error,
            error_request_range=request_range,
        )

    def with_count(self, count: int) -> "CollectionState":
        return replace(self, count=max(0, int(count)))

    @property
    def count_known(self) -> bool:
        return self.count is not None

    def idle(self) -> "CollectionState":
        """Clear a busy flag left behind by a previous process."""
        if self.busy:
            return replace(self, status=CollectionStatus.IDLE)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Persisted layout."""
        return {
            "busy": self.busy,
            "complete": self.complete,
            "error": self.error,
            "errorRequestRange": (
                self.error_request_range.to_dict() if self.error_request_range else None
            ),
            "count": self.count or 0,
            "fetched": self.fetched,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionState":
        """Reconstruct a record from the persisted layout."""
        error = data.get("error")
        error_range = RequestRange.from_dict(data.get("errorRequestRange"))

        if data.get("complete"):
            status = CollectionStatus.COMPLETE
            error, error_range = None, None
        elif error and error_range:
            status = CollectionStatus.FAILED
        elif data.get("busy"):
            status = CollectionStatus.FETCHING
            error, error_range = None, None
        else:
            status = CollectionStatus.IDLE
            error, error_range = None, None

        return cls(
            status=status,
            error=error,
            error_request_range=error_range,
            # A stored 0 is indistinguishable from never counted
            count=max(0, int(data["count"])) if data.get("count") else None,
            fetched=max(0, int(data.get("fetched") or 0)),
        )


@dataclass
class SyncState:
    """
    Complete persisted sync state for one account.

    Owned by the sync worker. Collaborators only ever see ``to_dict()``
    snapshots.
    """
    collections: Dict[str, CollectionState] = field(default_factory=dict)
    cursor: Optional[str] = None

    def get(self, name: str) -> CollectionState:
        return self.collections.get(name, CollectionState())

    def set(self, name: str, collection_state: CollectionState):
        self.collections[name] = collection_state

    def clear_busy(self) -> int:
        """Reset lingering busy flags. Returns how many were cleared."""
        cleared = 0
        for name, collection_state in self.collections.items():
            if collection_state.busy:
                self.collections[name] = collection_state.idle()
                cleared += 1
        return cleared

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            name: cs.to_dict() for name, cs in self.collections.items()
        }
        if self.cursor is not None:
            data["cursor"] = self.cursor
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncState":
        state = cls()
        if not data:
            return state
        for key, value in data.items():
            if key == "cursor":
                state.cursor = value
            elif key == "_id":
                continue
            elif isinstance(value, dict):
                state.collections[key] = CollectionState.from_dict(value)
        return state


MetadataIndex = Mapping[str, Tuple[Mapping[str, Any], ...]]


def freeze_metadata(index: Dict[str, List[Dict[str, Any]]]) -> MetadataIndex:
    """
    Read-only copy of a metadata index for attaching to page requests.

    Records are deep-copied and wrapped so page requests sharing the index
    cannot modify it.
    """
    return MappingProxyType({
        object_id: tuple(MappingProxyType(copy.deepcopy(record)) for record in records)
        for object_id, records in index.items()
    })


EMPTY_METADATA: MetadataIndex = MappingProxyType({})
