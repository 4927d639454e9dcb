"""SQLAlchemy ORM models.

Import from here: ``from filetag_sync.db.models import File, Tag, Dimension``
"""

from filetag_sync.db.models.base import (
    SyncStatus,
    SyncStatusMixin,
    TimestampMixin,
    generate_uuid,
)
from filetag_sync.db.models.expansion import DimensionExpansion, TagExpansion
from filetag_sync.db.models.taxonomy import Dimension, FileTagRelation, Tag
from filetag_sync.db.models.workspace import File, WorkspaceDirectory

__all__ = [
    "SyncStatus",
    "SyncStatusMixin",
    "TimestampMixin",
    "generate_uuid",
    "WorkspaceDirectory",
    "File",
    "Dimension",
    "Tag",
    "FileTagRelation",
    "DimensionExpansion",
    "TagExpansion",
]
