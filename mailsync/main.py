"""
FastAPI service running the collection sync worker for one account.

Exposes:
- Sync status per collection
- Manual retry
- Health check
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List

from fastapi import FastAPI

from mailsync.core.config import settings
from mailsync.core.database import DatabaseManager, MongoItemStore, MongoStateStore
from mailsync.providers.http_api import HttpCollectionAPI, PollingDeltaStream
from mailsync.routers import sync
from mailsync.workers.sync_worker import SyncWorker

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def make_delta_handler(item_store: MongoItemStore):
    """Apply streamed create/modify deltas to the local item store."""

    async def apply_deltas(deltas: List[Dict[str, Any]]):
        by_collection: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        for delta in deltas:
            if delta.get("event") == "delete":
                continue
            attributes = delta.get("attributes")
            collection = delta.get("object")
            if attributes and collection:
                by_collection[f"{collection}s"].append(attributes)

        for collection, items in by_collection.items():
            await item_store.save_items(collection, items)

    return apply_deltas


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan manager - startup and shutdown."""
    logger.info(f"Starting sync service for account {settings.account_id}...")

    db_manager = DatabaseManager()
    await db_manager.connect()
    app.state.db = db_manager

    api = HttpCollectionAPI(
        settings.remote_api_url,
        token=settings.remote_api_token,
        timeout=settings.remote_api_timeout,
        supports_metadata=settings.supports_metadata,
    )
    item_store = MongoItemStore(db_manager.db)

    def push_factory(ready, get_cursor, set_cursor):
        return PollingDeltaStream(
            api,
            ready,
            get_cursor,
            set_cursor,
            on_deltas=make_delta_handler(item_store),
            poll_interval=settings.delta_poll_interval,
        )

    worker = SyncWorker(
        account_id=settings.account_id,
        api=api,
        store=MongoStateStore(db_manager.db),
        organization_unit=settings.organization_unit,
        item_sink=item_store,
        push_factory=push_factory,
        config=settings,
    )
    app.state.sync_worker = worker

    # Startup must not wait for the first metadata prefetch
    start_task = asyncio.create_task(worker.start())

    yield

    logger.info("Shutting down sync service...")

    start_task.cancel()
    try:
        await worker.writer.flush()
    except Exception as e:
        logger.warning(f"Failed to flush sync state: {e}")
    await worker.cleanup()
    await api.close()
    await db_manager.disconnect()


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="Mailsync API",
        description="Status and control for the collection sync worker.",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
    )
    app.include_router(sync.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "mailsync.main:app",
        host="0.0.0.0",
        port=settings.api_port,
        reload=settings.debug,
    )
