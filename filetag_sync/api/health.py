"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from filetag_sync.config import get_settings
from filetag_sync.db.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


def _check_database(db: Session) -> bool:
    """Return True if the local store answers a trivial query."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False


@router.get("/health")
async def health_check(request: Request, db: Session = Depends(get_db)):
    """Health check endpoint."""
    worker = getattr(request.app.state, "sync_worker", None)
    database_ok = _check_database(db)

    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.app_version,
        "database": "connected" if database_ok else "unavailable",
        "profile": settings.profile,
        "sync": {
            "enabled": settings.sync_enabled,
            "worker_running": worker.is_running if worker else False,
            "state": worker.state.value if worker else None,
        },
    }


@router.get("/version")
async def version():
    """Get version info."""
    return {"name": settings.app_name, "version": settings.app_version}
