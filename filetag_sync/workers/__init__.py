"""Background workers package."""

from filetag_sync.workers.cloud_sync_worker import CloudSyncWorker, WorkerState

__all__ = ["CloudSyncWorker", "WorkerState"]
