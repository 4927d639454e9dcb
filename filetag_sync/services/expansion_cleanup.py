"""Removes local proposals the cloud has since accepted."""

import logging

from sqlalchemy.orm import Session

from filetag_sync.db.repositories import DimensionExpansionRepository, TagExpansionRepository

logger = logging.getLogger(__name__)


class ExpansionCleanup:
    """Deletes proposal rows superseded by synced canonical rows.

    An accepted proposal comes back from the cloud as a regular dimension or
    tag with ``sync_status = SYNCED``. Matching is by name because the
    canonical row's local id differs from the one the proposal referenced.
    """

    def __init__(self, db: Session):
        self.db = db
        self.dimension_expansions = DimensionExpansionRepository(db)
        self.tag_expansions = TagExpansionRepository(db)

    def run(self) -> tuple[int, int]:
        """Delete accepted proposals and commit.

        Returns:
            (deleted dimension expansions, deleted tag expansions)
        """
        deleted_dims = self.dimension_expansions.delete_accepted()
        deleted_tags = self.tag_expansions.delete_accepted()
        self.db.commit()

        if deleted_dims:
            logger.info(f"Cleaned up {deleted_dims} accepted dimension expansions")
        if deleted_tags:
            logger.info(f"Cleaned up {deleted_tags} accepted tag expansions")
        return deleted_dims, deleted_tags
