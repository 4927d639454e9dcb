# Services package

from filetag_sync.services.backoff import BackoffController, is_permission_denied
from filetag_sync.services.batch_selector import BatchSelector, union_tags
from filetag_sync.services.cloud_client import CloudAnalysisClient, CloudServiceProtocol
from filetag_sync.services.connectivity import ConnectivityMonitor
from filetag_sync.services.expansion_cleanup import ExpansionCleanup
from filetag_sync.services.identifier_cache import IdentifierCache, tag_key
from filetag_sync.services.phase_executor import (
    CycleReport,
    MappingMissTracker,
    PhaseExecutor,
    SyncPhase,
)
from filetag_sync.services.sync_status import pending_counts

__all__ = [
    "BackoffController",
    "BatchSelector",
    "CloudAnalysisClient",
    "CloudServiceProtocol",
    "ConnectivityMonitor",
    "CycleReport",
    "ExpansionCleanup",
    "IdentifierCache",
    "MappingMissTracker",
    "PhaseExecutor",
    "SyncPhase",
    "is_permission_denied",
    "pending_counts",
    "tag_key",
    "union_tags",
]
