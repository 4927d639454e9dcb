"""Cloud sync status and manual trigger endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from filetag_sync.config import get_settings
from filetag_sync.db.database import get_db
from filetag_sync.schemas.sync import (
    CycleReportResponse,
    PendingCounts,
    SyncRunResponse,
    SyncStatusResponse,
)
from filetag_sync.services.sync_status import pending_counts
from filetag_sync.workers.cloud_sync_worker import CloudSyncWorker

logger = logging.getLogger(__name__)

router = APIRouter()


def get_sync_worker(request: Request) -> CloudSyncWorker:
    """Dependency returning the worker built by the application lifespan."""
    worker = getattr(request.app.state, "sync_worker", None)
    if worker is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cloud sync worker is not available",
        )
    return worker


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    worker: CloudSyncWorker = Depends(get_sync_worker),
    db: Session = Depends(get_db),
):
    """Worker state, last cycle and pending-work counts."""
    return SyncStatusResponse(
        enabled=get_settings().sync_enabled,
        pending=PendingCounts(**pending_counts(db)),
        **worker.status(),
    )


@router.post("/run", response_model=SyncRunResponse)
async def run_sync(worker: CloudSyncWorker = Depends(get_sync_worker)):
    """Run one cycle now, through the same gates as a scheduled tick."""
    report = await worker.try_sync()
    if report is None:
        return SyncRunResponse(ran=False, skipped_reason=worker.status()["last_skip_reason"])

    logger.info(f"Manual sync cycle {report.cycle_id} finished in phase {report.phase.value}")
    return SyncRunResponse(
        ran=True,
        report=CycleReportResponse(**report.to_dict()),
        error=None if report.completed else worker.status()["last_error"],
    )
