"""File and file-tag relation repositories."""

from collections import defaultdict
from collections.abc import Sequence

from sqlalchemy import select, update

from filetag_sync.db.models import (
    Dimension,
    File,
    FileTagRelation,
    SyncStatus,
    Tag,
    WorkspaceDirectory,
)
from filetag_sync.db.repositories.base import BaseRepository


class FileRepository(BaseRepository[File]):
    model = File

    def list_pending_analyzed(self, limit: int, workspace_type: str) -> list[File]:
        """Pending, analyzed files that live in a workspace of ``workspace_type``."""
        stmt = (
            select(File)
            .join(WorkspaceDirectory, File.workspace_id == WorkspaceDirectory.id)
            .where(
                File.sync_status == SyncStatus.PENDING,
                File.is_analyzed.is_(True),
                WorkspaceDirectory.type == workspace_type,
            )
            .order_by(File.last_analyzed_at, File.id)
            .limit(limit)
        )
        return list(self.db.scalars(stmt).all())


class FileTagRelationRepository(BaseRepository[FileTagRelation]):
    model = FileTagRelation

    def list_snapshot_for_files(
        self, file_ids: Sequence[str]
    ) -> list[tuple[str, int, str, str, str]]:
        """Current tag assignments of the given files.

        Returns:
            ``(file_id, tag_id, content_hash, tag_name, dimension_name)`` tuples.
        """
        if not file_ids:
            return []
        stmt = (
            select(File.id, Tag.id, File.content_hash, Tag.name, Dimension.name)
            .select_from(FileTagRelation)
            .join(File, FileTagRelation.file_id == File.id)
            .join(Tag, FileTagRelation.tag_id == Tag.id)
            .join(Dimension, Tag.dimension_id == Dimension.id)
            .where(FileTagRelation.file_id.in_(list(file_ids)))
            .order_by(File.id, Dimension.name, Tag.name)
        )
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def list_pending_tags_of_synced_files(self) -> list[tuple[int, str, str]]:
        """Tags of pending relations whose file has already been synced.

        Returns:
            Distinct ``(tag_id, tag_name, dimension_name)`` tuples.
        """
        stmt = (
            select(Tag.id, Tag.name, Dimension.name)
            .select_from(FileTagRelation)
            .join(File, FileTagRelation.file_id == File.id)
            .join(Tag, FileTagRelation.tag_id == Tag.id)
            .join(Dimension, Tag.dimension_id == Dimension.id)
            .where(
                FileTagRelation.sync_status == SyncStatus.PENDING,
                File.sync_status == SyncStatus.SYNCED,
            )
            .distinct()
            .order_by(Tag.id)
        )
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def list_pending_of_synced_files(
        self, tag_ids: Sequence[int], limit: int
    ) -> list[tuple[str, int, str]]:
        """Pending relations to ``tag_ids`` whose file has already been synced.

        Returns:
            ``(file_id, tag_id, content_hash)`` tuples.
        """
        if not tag_ids:
            return []
        stmt = (
            select(File.id, FileTagRelation.tag_id, File.content_hash)
            .select_from(FileTagRelation)
            .join(File, FileTagRelation.file_id == File.id)
            .where(
                FileTagRelation.sync_status == SyncStatus.PENDING,
                FileTagRelation.tag_id.in_(list(tag_ids)),
                File.sync_status == SyncStatus.SYNCED,
            )
            .order_by(File.id, FileTagRelation.tag_id)
            .limit(limit)
        )
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def mark_pairs_synced(self, pairs: Sequence[tuple[str, int]]) -> int:
        """Mark the given ``(file_id, tag_id)`` relations synced."""
        by_file: dict[str, list[int]] = defaultdict(list)
        for file_id, tag_id in pairs:
            by_file[file_id].append(tag_id)

        updated = 0
        for file_id, tag_ids in by_file.items():
            result = self.db.execute(
                update(FileTagRelation)
                .where(
                    FileTagRelation.file_id == file_id,
                    FileTagRelation.tag_id.in_(tag_ids),
                )
                .values(sync_status=SyncStatus.SYNCED)
                .execution_options(synchronize_session=False)
            )
            updated += result.rowcount or 0
        return updated
