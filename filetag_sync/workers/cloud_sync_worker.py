"""Periodic local-to-cloud sync worker.

One instance per process. Each tick passes four gates in order before a
cycle runs:

1. no cycle already in flight
2. no permission-denied cooldown active
3. the cloud host is reachable
4. the identifier cache is initialized (refreshed here if not)

Every failure is contained at the cycle boundary: logged, classified for
backoff, never raised to the caller.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from filetag_sync.config import Settings, get_settings
from filetag_sync.core.logging import sync_cycle_id_var
from filetag_sync.db.database import SessionLocal
from filetag_sync.services.backoff import BackoffController
from filetag_sync.services.cloud_client import CloudAnalysisClient, CloudServiceProtocol
from filetag_sync.services.connectivity import ConnectivityMonitor
from filetag_sync.services.identifier_cache import IdentifierCache
from filetag_sync.services.phase_executor import CycleReport, PhaseExecutor

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    BACKOFF = "backoff"


class CloudSyncWorker:
    """Async background worker that mirrors pending local rows to the cloud."""

    def __init__(
        self,
        settings: Settings | None = None,
        cloud: CloudServiceProtocol | None = None,
        connectivity: ConnectivityMonitor | None = None,
        cache: IdentifierCache | None = None,
        backoff: BackoffController | None = None,
        session_factory: Callable[[], Session] | None = None,
    ):
        """Initialize worker.

        Args:
            settings: Optional settings override (uses get_settings() if None).
            cloud: Cloud service client (CloudAnalysisClient if None).
            connectivity: Reachability probe (ConnectivityMonitor if None).
            cache: Identifier cache (a fresh one bound to ``cloud`` if None).
            backoff: Cooldown controller (built from settings if None).
            session_factory: Callable returning a new Session per cycle
                (SessionLocal if None).
        """
        self.settings = settings or get_settings()
        self.cloud = cloud or CloudAnalysisClient(self.settings)
        self.connectivity = connectivity or ConnectivityMonitor(self.settings)
        self.cache = cache or IdentifierCache(self.cloud)
        self.backoff = backoff or BackoffController(
            cooldown_seconds=self.settings.sync_permission_backoff_minutes * 60
        )
        self.session_factory = session_factory or SessionLocal
        self.executor = PhaseExecutor(self.cloud, self.cache, self.settings)

        self._task: asyncio.Task | None = None
        self._shutdown = asyncio.Event()
        self._is_syncing = False
        self._last_report: CycleReport | None = None
        self._last_error: str | None = None
        self._last_success_at: datetime | None = None
        self._last_skip_reason: str | None = None

    @property
    def interval_seconds(self) -> int:
        return self.settings.sync_interval_seconds

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def state(self) -> WorkerState:
        if self._is_syncing:
            return WorkerState.RUNNING
        if self.backoff.is_suspended():
            return WorkerState.BACKOFF
        return WorkerState.IDLE

    async def start(self) -> None:
        """Start the tick loop as an asyncio task. No-op if already running."""
        if self.is_running:
            return
        self._shutdown.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"CloudSyncWorker started (interval={self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop scheduling ticks and wait for an in-flight cycle to finish.

        The running cycle is never cancelled.
        """
        logger.info("CloudSyncWorker stopping...")
        self._shutdown.set()
        if self._task:
            await self._task
            self._task = None
        while self._is_syncing:
            await asyncio.sleep(0.05)
        logger.info("CloudSyncWorker stopped")

    async def _run_loop(self) -> None:
        """Tick every ``interval_seconds`` until shutdown."""
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.interval_seconds)
                break  # Shutdown requested
            except TimeoutError:
                pass  # Normal timeout, time to tick

            try:
                await self.try_sync()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sync tick error: {e}")

    async def try_sync(self) -> CycleReport | None:
        """Run one cycle if every gate passes.

        Returns:
            The cycle report, or None if a gate skipped the tick.
        """
        if self._is_syncing:
            return self._skip("cycle already in flight")

        if self.backoff.is_suspended():
            remaining = self.backoff.remaining_seconds()
            return self._skip(f"permission cooldown active ({remaining:.0f}s remaining)")

        self._is_syncing = True
        try:
            try:
                online = await self.connectivity.is_online()
            except Exception as e:
                logger.error(f"Connectivity probe failed: {e}")
                return self._skip(f"connectivity probe failed: {e}")
            if not online:
                return self._skip("cloud unreachable")

            if not self.cache.initialized:
                await self.cache.refresh(self.settings.default_language)

            return await self._run_cycle()
        finally:
            self._is_syncing = False

    def _skip(self, reason: str) -> None:
        self._last_skip_reason = reason
        logger.debug(f"Sync tick skipped: {reason}")
        return None

    async def _run_cycle(self) -> CycleReport:
        """Run a cycle inside the failure boundary."""
        report = CycleReport()
        token = sync_cycle_id_var.set(report.cycle_id)
        self._last_skip_reason = None
        db = None
        try:
            db = self.session_factory()
            await self.executor.run_cycle(db, report)
        except Exception as e:
            logger.exception(f"Sync cycle failed in phase {report.phase.value}: {e}")
            self._last_error = f"{type(e).__name__}: {e}"
            self.backoff.record_failure(e)
        else:
            self._last_error = None
            self._last_success_at = report.finished_at
            self.backoff.record_success()
            logger.info(
                f"Sync cycle complete (uploads={report.upload_calls}, "
                f"files={report.files_uploaded}, tags={report.tags_uploaded})"
            )
        finally:
            if db is not None:
                db.close()
            sync_cycle_id_var.reset(token)

        self._last_report = report
        return report

    def status(self) -> dict[str, Any]:
        """Snapshot of the worker for the host API."""
        return {
            "state": self.state.value,
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "language": self.settings.default_language,
            "cache_initialized": self.cache.initialized,
            "cached_dimensions": self.cache.dimension_count,
            "cached_tags": self.cache.tag_count,
            "backoff_remaining_seconds": round(self.backoff.remaining_seconds(), 1),
            "escalated_records": self.executor.misses.escalated,
            "last_report": self._last_report.to_dict() if self._last_report else None,
            "last_error": self._last_error,
            "last_success_at": (
                self._last_success_at.isoformat() if self._last_success_at else None
            ),
            "last_skip_reason": self._last_skip_reason,
        }
