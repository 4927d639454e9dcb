"""Repository layer: query and status-update helpers over the local store."""

from filetag_sync.db.repositories.base import BaseRepository
from filetag_sync.db.repositories.expansion import (
    DimensionExpansionRepository,
    TagExpansionRepository,
)
from filetag_sync.db.repositories.file import FileRepository, FileTagRelationRepository
from filetag_sync.db.repositories.tag import TagRepository

__all__ = [
    "BaseRepository",
    "DimensionExpansionRepository",
    "FileRepository",
    "FileTagRelationRepository",
    "TagExpansionRepository",
    "TagRepository",
]
