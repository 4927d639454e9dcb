"""Locally generated dimension and tag proposals awaiting cloud review."""

from sqlalchemy import Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from filetag_sync.db.database import Base
from filetag_sync.db.models.base import SyncStatusMixin, TimestampMixin


class DimensionExpansion(SyncStatusMixin, TimestampMixin, Base):
    """Proposed new dimension.

    Deleted once a synced canonical Dimension with the same name exists.
    """

    __tablename__ = "dimension_expansions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False)
    level = Column(Integer, nullable=False, default=1)
    tags = Column(Text, nullable=False, default="[]")  # JSON array
    trigger_conditions = Column(Text, nullable=True)  # JSON
    description = Column(Text, nullable=True)
    applicable_file_types = Column(Text, nullable=True)  # JSON array
    context_hints = Column(Text, nullable=True)  # JSON


class TagExpansion(SyncStatusMixin, TimestampMixin, Base):
    """Proposed new tag under an existing local dimension.

    Deleted once a synced canonical Tag with the same name exists under a
    dimension of the same name.
    """

    __tablename__ = "tag_expansions"
    __table_args__ = (
        UniqueConstraint("dimension_id", "name", name="uq_tag_expansions_dimension_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    dimension_id = Column(
        Integer,
        ForeignKey("file_dimensions.id", ondelete="CASCADE"),
        nullable=False,
    )

    dimension = relationship("Dimension")
