"""Tests for the CloudSyncWorker scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from filetag_sync.core.exceptions import CloudPermissionError, CloudUnavailableError
from filetag_sync.core.logging import sync_cycle_id_var
from filetag_sync.db.models import SyncStatus
from filetag_sync.services.backoff import BackoffController
from filetag_sync.services.phase_executor import SyncPhase
from filetag_sync.workers.cloud_sync_worker import CloudSyncWorker, WorkerState


@pytest.fixture
def backoff(clock):
    return BackoffController(cooldown_seconds=600, clock=clock)


@pytest.fixture
def worker(settings, cloud, connectivity, backoff, session_factory):
    return CloudSyncWorker(
        settings,
        cloud=cloud,
        connectivity=connectivity,
        backoff=backoff,
        session_factory=session_factory,
    )


@pytest.fixture
def pending_file(seed):
    dim = seed.dimension("类型")
    tag = seed.tag(dim, "合同")
    ws = seed.workspace()
    return seed.file(ws, content_hash="h-1", tags=[tag])


class TestWorkerInit:
    """Test worker construction."""

    def test_starts_idle(self, worker):
        assert worker.state is WorkerState.IDLE
        assert worker._task is None
        assert not worker.is_running

    def test_cache_bound_to_cloud(self, worker, cloud):
        assert worker.cache.cloud is cloud
        assert worker.executor.cache is worker.cache

    def test_interval_from_settings(self, worker):
        assert worker.interval_seconds == 30

    def test_backoff_built_from_settings(self, settings, cloud, connectivity):
        worker = CloudSyncWorker(settings, cloud=cloud, connectivity=connectivity)

        assert worker.backoff.cooldown_seconds == settings.sync_permission_backoff_minutes * 60


class TestGates:
    """Test the checks that run before a cycle."""

    @pytest.mark.asyncio
    async def test_skips_when_cycle_in_flight(self, worker, connectivity):
        worker._is_syncing = True

        assert await worker.try_sync() is None

        assert connectivity.probes == 0
        assert worker.status()["last_skip_reason"] == "cycle already in flight"

    @pytest.mark.asyncio
    async def test_skips_during_cooldown(self, worker, connectivity, backoff, clock):
        backoff.record_failure(CloudPermissionError("permission denied"))

        assert await worker.try_sync() is None
        assert connectivity.probes == 0
        assert worker.state is WorkerState.BACKOFF

        clock.advance(600)
        assert await worker.try_sync() is not None

    @pytest.mark.asyncio
    async def test_skips_when_offline(self, worker, connectivity, cloud, pending_file):
        connectivity.online = False

        assert await worker.try_sync() is None

        assert cloud.calls == []
        assert cloud.fetch_count == 0
        assert worker.status()["last_skip_reason"] == "cloud unreachable"
        assert not worker._is_syncing

    @pytest.mark.asyncio
    async def test_probe_error_skips_tick(self, worker, cloud):
        async def broken_probe():
            raise RuntimeError("resolver crashed")

        worker.connectivity.is_online = broken_probe

        assert await worker.try_sync() is None

        assert cloud.calls == []
        assert worker.status()["last_skip_reason"].startswith("connectivity probe failed")
        assert not worker._is_syncing

    @pytest.mark.asyncio
    async def test_initializes_cache_before_first_cycle(self, worker, cloud):
        cloud.add_dimension("类型")

        report = await worker.try_sync()

        assert report is not None
        assert worker.cache.initialized
        assert worker.cache.resolve_dimension("类型") is not None

    @pytest.mark.asyncio
    async def test_failed_cache_init_retried_next_tick(self, worker, cloud):
        cloud.fail_fetch = CloudUnavailableError("offline")

        await worker.try_sync()
        assert not worker.cache.initialized
        fetches = cloud.fetch_count

        cloud.fail_fetch = None
        await worker.try_sync()

        assert cloud.fetch_count > fetches
        assert worker.cache.initialized


class TestFailureBoundary:
    """Test that cycle failures are contained and classified."""

    @pytest.mark.asyncio
    async def test_successful_cycle(self, db, worker, cloud, pending_file):
        report = await worker.try_sync()

        assert report.completed
        assert "h-1" in cloud.files
        db.refresh(pending_file)
        assert pending_file.sync_status == SyncStatus.SYNCED
        status = worker.status()
        assert status["last_error"] is None
        assert status["last_report"]["files_uploaded"] == 1
        assert status["last_success_at"] is not None

    @pytest.mark.asyncio
    async def test_permission_failure_engages_backoff(self, worker, cloud, pending_file):
        cloud.fail_on["tags"] = CloudPermissionError(
            "permission denied for table file_tags", 403, "42501"
        )

        report = await worker.try_sync()

        assert report is not None
        assert not report.completed
        assert report.phase is SyncPhase.TAGS
        assert worker.state is WorkerState.BACKOFF
        assert "CloudPermissionError" in worker.status()["last_error"]

    @pytest.mark.asyncio
    async def test_other_failure_does_not_engage_backoff(self, worker, cloud, pending_file):
        cloud.fail_on["files"] = CloudUnavailableError("cloud down")

        report = await worker.try_sync()

        assert not report.completed
        assert worker.state is WorkerState.IDLE
        assert worker.status()["backoff_remaining_seconds"] == 0.0

    @pytest.mark.asyncio
    async def test_failed_rows_retried_next_cycle(self, db, worker, cloud, pending_file):
        cloud.fail_on["files"] = CloudUnavailableError("cloud down")
        await worker.try_sync()
        db.refresh(pending_file)
        assert pending_file.sync_status == SyncStatus.PENDING

        cloud.fail_on.clear()
        report = await worker.try_sync()

        assert report.completed
        db.refresh(pending_file)
        assert pending_file.sync_status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_success_clears_backoff(self, worker, backoff, clock):
        backoff.record_failure(CloudPermissionError("permission denied"))
        clock.advance(601)

        await worker.try_sync()

        assert backoff._resume_at is None

    @pytest.mark.asyncio
    async def test_cycle_id_bound_during_cycle(self, worker):
        seen = []

        async def capture(db, report):
            seen.append(sync_cycle_id_var.get())
            return report

        with patch.object(worker.executor, "run_cycle", side_effect=capture):
            report = await worker.try_sync()

        assert seen == [report.cycle_id]
        assert sync_cycle_id_var.get() is None

    @pytest.mark.asyncio
    async def test_session_closed_after_failure(self, worker):
        session = MagicMock()
        worker.session_factory = lambda: session

        with patch.object(
            worker.executor, "run_cycle", new=AsyncMock(side_effect=RuntimeError("boom"))
        ):
            report = await worker.try_sync()

        assert report is not None
        session.close.assert_called_once()
        assert worker.status()["last_error"] == "RuntimeError: boom"

    @pytest.mark.asyncio
    async def test_session_open_failure_contained(self, worker):
        def locked():
            raise RuntimeError("database is locked")

        worker.session_factory = locked

        report = await worker.try_sync()

        assert report is not None
        assert not report.completed
        assert worker.status()["last_error"] == "RuntimeError: database is locked"


class TestLifecycle:
    """Test start/stop behavior."""

    @pytest.mark.asyncio
    async def test_start_creates_task(self, worker):
        with patch.object(worker, "_run_loop", new_callable=AsyncMock):
            await worker.start()

            assert worker._task is not None
            assert not worker._shutdown.is_set()

            await worker.stop()

        assert worker._task is None
        assert worker._shutdown.is_set()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, worker):
        await worker.start()
        task = worker._task

        await worker.start()

        assert worker._task is task
        await worker.stop()

    @pytest.mark.asyncio
    async def test_loop_ticks_on_interval(self, settings, cloud, connectivity, session_factory):
        fast = settings.model_copy(update={"sync_interval_seconds": 0.01})
        worker = CloudSyncWorker(
            fast, cloud=cloud, connectivity=connectivity, session_factory=session_factory
        )
        connectivity.online = False

        await worker.start()
        await asyncio.sleep(0.1)
        await worker.stop()

        assert connectivity.probes >= 2
        assert not worker.is_running

    @pytest.mark.asyncio
    async def test_raising_probe_keeps_loop_alive(
        self, settings, cloud, connectivity, session_factory
    ):
        fast = settings.model_copy(update={"sync_interval_seconds": 0.01})
        worker = CloudSyncWorker(
            fast, cloud=cloud, connectivity=connectivity, session_factory=session_factory
        )
        probes = []

        async def broken_probe():
            probes.append(1)
            raise RuntimeError("resolver crashed")

        worker.connectivity.is_online = broken_probe

        await worker.start()
        await asyncio.sleep(0.1)
        assert worker.is_running
        await worker.stop()

        assert len(probes) >= 2

    @pytest.mark.asyncio
    async def test_tick_error_keeps_loop_alive(self, settings, cloud, connectivity):
        fast = settings.model_copy(update={"sync_interval_seconds": 0.01})
        worker = CloudSyncWorker(fast, cloud=cloud, connectivity=connectivity)

        with patch.object(
            worker, "try_sync", new=AsyncMock(side_effect=RuntimeError("boom"))
        ) as tick:
            await worker.start()
            await asyncio.sleep(0.1)
            assert worker.is_running
            await worker.stop()

        assert tick.await_count >= 2

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_cycle(self, worker):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_probe():
            entered.set()
            await release.wait()
            return False

        worker.connectivity.is_online = slow_probe
        await worker.start()
        cycle = asyncio.create_task(worker.try_sync())
        await entered.wait()

        stopper = asyncio.create_task(worker.stop())
        await asyncio.sleep(0.1)
        assert not stopper.done()

        release.set()
        await stopper
        assert cycle.done()
        assert not cycle.cancelled()
