"""FastAPI application entry point."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from filetag_sync.api import health, sync
from filetag_sync.config import get_settings
from filetag_sync.core.logging import configure_logging
from filetag_sync.db.database import init_db
from filetag_sync.workers.cloud_sync_worker import CloudSyncWorker

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize the store and run the sync worker."""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"  Profile: {settings.profile}")
    logger.info(f"  Cloud service: {settings.cloud_api_base_url}")
    logger.info(f"  Language: {settings.default_language}")
    logger.info(f"  Sync interval: {settings.sync_interval_seconds}s")
    logger.info("=" * 60)

    # Track server start time for uptime calculation
    app.state.start_time = time.time()
    app.state.settings = settings

    init_db()

    # One worker per process; the API reads and triggers it through app.state
    sync_worker = CloudSyncWorker(settings)
    if settings.sync_enabled:
        await sync_worker.start()
    else:
        logger.info("Cloud sync disabled (SYNC_ENABLED=false)")
    app.state.sync_worker = sync_worker

    yield

    # Shutdown
    await sync_worker.stop()
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Mirrors the local file-tagging store to the cloud analysis service",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# API Routes
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(sync.router, prefix="/api/sync", tags=["Sync"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "filetag_sync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
