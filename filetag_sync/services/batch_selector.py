"""Pending-work queries for one sync cycle.

Every selection is capped at the batch size. Selection is idempotent: a row
stays selectable until its upload has succeeded and it was marked synced.
"""

from collections.abc import Iterable, Sequence

from sqlalchemy.orm import Session

from filetag_sync.db.models import DimensionExpansion, File, Tag, TagExpansion
from filetag_sync.db.repositories import (
    DimensionExpansionRepository,
    FileRepository,
    FileTagRelationRepository,
    TagExpansionRepository,
    TagRepository,
)


def union_tags(*groups: Iterable[Tag]) -> list[Tag]:
    """Concatenate tag lists, keeping the first occurrence of each local id."""
    seen: dict[int, Tag] = {}
    for group in groups:
        for tag in group:
            seen.setdefault(tag.id, tag)
    return list(seen.values())


class BatchSelector:
    """Loads the rows a cycle will try to upload."""

    def __init__(self, db: Session, batch_size: int = 50, workspace_type: str = "SPEEDY"):
        self.db = db
        self.batch_size = batch_size
        self.workspace_type = workspace_type
        self.files = FileRepository(db)
        self.relations = FileTagRelationRepository(db)
        self.tags = TagRepository(db)
        self.dimension_expansions = DimensionExpansionRepository(db)
        self.tag_expansions = TagExpansionRepository(db)

    def pending_files(self) -> list[File]:
        return self.files.list_pending_analyzed(self.batch_size, self.workspace_type)

    def tags_for_files(self, file_ids: Sequence[str]) -> list[Tag]:
        """Tags referenced by the files, regardless of the tags' own status.

        A file cannot be uploaded before every tag it references exists in
        the cloud, so already-synced tags are re-sent too.
        """
        return self.tags.list_for_files(file_ids)

    def pending_tags(self) -> list[Tag]:
        return self.tags.list_pending(self.batch_size)

    def tags_to_define(self, files: Sequence[File]) -> list[Tag]:
        """Union of the files' tags and the standalone pending tags, by id."""
        referenced = self.tags_for_files([f.id for f in files])
        return union_tags(referenced, self.pending_tags())

    def relation_snapshot(self, file_ids: Sequence[str]) -> list[tuple[str, int, str, str, str]]:
        return self.relations.list_snapshot_for_files(file_ids)

    def pending_relation_tags(self) -> list[tuple[int, str, str]]:
        """Tags still owed a relation upload by files that are already synced."""
        return self.relations.list_pending_tags_of_synced_files()

    def pending_relations_of_synced_files(
        self, tag_ids: Sequence[int]
    ) -> list[tuple[str, int, str]]:
        """Relations left pending when their file was synced, limited to ``tag_ids``."""
        return self.relations.list_pending_of_synced_files(tag_ids, self.batch_size)

    def pending_dimension_expansions(self) -> list[DimensionExpansion]:
        return self.dimension_expansions.list_pending(self.batch_size)

    def pending_tag_expansions(self) -> list[TagExpansion]:
        return self.tag_expansions.list_pending(self.batch_size)
