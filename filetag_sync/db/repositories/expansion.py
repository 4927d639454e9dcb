"""Dimension and tag expansion (proposal) repositories."""

from sqlalchemy import and_, delete, select
from sqlalchemy.orm import aliased, joinedload

from filetag_sync.db.models import (
    Dimension,
    DimensionExpansion,
    SyncStatus,
    Tag,
    TagExpansion,
)
from filetag_sync.db.repositories.base import BaseRepository


class DimensionExpansionRepository(BaseRepository[DimensionExpansion]):
    model = DimensionExpansion

    def delete_accepted(self) -> int:
        """Delete proposals whose name now exists as a synced canonical dimension."""
        synced_names = select(Dimension.name).where(Dimension.sync_status == SyncStatus.SYNCED)
        result = self.db.execute(
            delete(DimensionExpansion)
            .where(DimensionExpansion.name.in_(synced_names))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class TagExpansionRepository(BaseRepository[TagExpansion]):
    model = TagExpansion

    def list_pending(self, limit: int) -> list[TagExpansion]:
        """Pending tag proposals with their dimension loaded (for its name)."""
        stmt = (
            select(TagExpansion)
            .join(Dimension, TagExpansion.dimension_id == Dimension.id)
            .options(joinedload(TagExpansion.dimension))
            .where(TagExpansion.sync_status == SyncStatus.PENDING)
            .order_by(TagExpansion.id)
            .limit(limit)
        )
        return list(self.db.scalars(stmt).unique().all())

    def delete_accepted(self) -> int:
        """Delete proposals matched by a synced canonical tag.

        A match is a Tag with the proposal's name whose dimension has the same
        name as the proposal's dimension. Ids are not compared: the canonical
        rows may carry different ids than the ones the proposal was made against.
        """
        real_dim = aliased(Dimension)
        proposed_dim = aliased(Dimension)
        accepted = (
            select(1)
            .select_from(Tag)
            .join(real_dim, Tag.dimension_id == real_dim.id)
            .join(proposed_dim, proposed_dim.id == TagExpansion.dimension_id)
            .where(
                and_(
                    Tag.name == TagExpansion.name,
                    real_dim.name == proposed_dim.name,
                    Tag.sync_status == SyncStatus.SYNCED,
                )
            )
            .correlate(TagExpansion)
        )
        result = self.db.execute(
            delete(TagExpansion)
            .where(accepted.exists())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
