"""Sync status and retry endpoints."""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from mailsync.workers.sync_worker import SyncWorker

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


# ==================== Response Schemas ====================

class RequestRangeResponse(BaseModel):
    offset: int
    limit: int


class CollectionStatusResponse(BaseModel):
    """Progress of one collection."""
    status: str
    busy: bool
    complete: bool
    error: Optional[str] = None
    error_request_range: Optional[RequestRangeResponse] = None
    count: Optional[int] = None
    fetched: int


class SyncStatusResponse(BaseModel):
    """Sync worker status."""
    account_id: str
    ready: bool
    busy: bool
    retry_delay_seconds: float
    retry_pending: bool
    cursor: Optional[str] = None
    collections: Dict[str, CollectionStatusResponse]


# ==================== Endpoints ====================

def _get_worker(request: Request) -> SyncWorker:
    worker = getattr(request.app.state, "sync_worker", None)
    if worker is None:
        raise HTTPException(status_code=503, detail="Sync worker not running")
    return worker


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(request: Request):
    """Get per-collection progress for the account."""
    worker = _get_worker(request)

    collections = {}
    for name, _ in worker.catalog:
        cs = worker.collection_state(name)
        collections[name] = CollectionStatusResponse(
            status=cs.status.value,
            busy=cs.busy,
            complete=cs.complete,
            error=cs.error,
            error_request_range=(
                RequestRangeResponse(**cs.error_request_range.to_dict())
                if cs.error_request_range else None
            ),
            count=cs.count,
            fetched=cs.fetched,
        )

    return SyncStatusResponse(
        account_id=worker.account_id,
        ready=worker.ready(),
        busy=worker.busy(),
        retry_delay_seconds=worker.backoff.delay,
        retry_pending=worker.backoff.pending,
        cursor=worker.get_cursor(),
        collections=collections,
    )


@router.post("/retry")
async def retry_sync(request: Request):
    """Resume failed collections now instead of waiting for the backoff timer."""
    worker = _get_worker(request)
    if not worker.ready():
        raise HTTPException(status_code=409, detail="Sync state is still loading")

    await worker.retry()
    return {"success": True, "busy": worker.busy()}
