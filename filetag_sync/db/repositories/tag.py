"""Tag repository."""

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from filetag_sync.db.models import FileTagRelation, SyncStatus, Tag
from filetag_sync.db.repositories.base import BaseRepository


class TagRepository(BaseRepository[Tag]):
    model = Tag

    def list_pending(self, limit: int) -> list[Tag]:
        """Pending tags with their dimension loaded."""
        stmt = (
            select(Tag)
            .options(joinedload(Tag.dimension))
            .where(Tag.sync_status == SyncStatus.PENDING)
            .order_by(Tag.id)
            .limit(limit)
        )
        return list(self.db.scalars(stmt).unique().all())

    def list_for_files(self, file_ids: Sequence[str]) -> list[Tag]:
        """Distinct tags referenced by the files' relations, whatever their own status."""
        if not file_ids:
            return []
        tag_ids = (
            select(FileTagRelation.tag_id)
            .where(FileTagRelation.file_id.in_(list(file_ids)))
            .distinct()
        )
        stmt = (
            select(Tag)
            .options(joinedload(Tag.dimension))
            .where(Tag.id.in_(tag_ids))
            .order_by(Tag.id)
        )
        return list(self.db.scalars(stmt).unique().all())
