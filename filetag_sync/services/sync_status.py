"""Pending-work counts for the host application."""

from sqlalchemy.orm import Session

from filetag_sync.db.repositories import (
    DimensionExpansionRepository,
    FileRepository,
    FileTagRelationRepository,
    TagExpansionRepository,
    TagRepository,
)


def pending_counts(db: Session) -> dict[str, int]:
    """Number of rows still waiting for upload, per mirrored table.

    File counts include files outside the mirrored workspace type and files
    not yet analyzed; they are pending but not yet selectable.
    """
    counts = {
        "files": FileRepository(db).count_pending(),
        "tags": TagRepository(db).count_pending(),
        "tag_relations": FileTagRelationRepository(db).count_pending(),
        "dimension_expansions": DimensionExpansionRepository(db).count_pending(),
        "tag_expansions": TagExpansionRepository(db).count_pending(),
    }
    counts["total"] = sum(counts.values())
    return counts
