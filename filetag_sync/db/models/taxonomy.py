"""Dimension, tag and file-tag relation models."""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from filetag_sync.db.database import Base
from filetag_sync.db.models.base import SyncStatusMixin, TimestampMixin


class Dimension(SyncStatusMixin, TimestampMixin, Base):
    """A classification axis. Mapped to its cloud row by ``name``."""

    __tablename__ = "file_dimensions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, unique=True, nullable=False)
    level = Column(Integer, nullable=False, default=1)
    tags = Column(Text, nullable=False, default="[]")  # JSON array of tag definitions
    trigger_conditions = Column(Text, nullable=True)  # JSON
    is_ai_generated = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=True)
    applicable_file_types = Column(Text, nullable=True)  # JSON array
    context_hints = Column(Text, nullable=True)  # JSON

    file_tags = relationship("Tag", back_populates="dimension", cascade="all, delete-orphan")


class Tag(SyncStatusMixin, TimestampMixin, Base):
    """A label under a dimension. Mapped to its cloud row by (cloud dimension id, name)."""

    __tablename__ = "file_tags"
    __table_args__ = (UniqueConstraint("dimension_id", "name", name="uq_file_tags_dimension_name"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    dimension_id = Column(
        Integer,
        ForeignKey("file_dimensions.id", ondelete="CASCADE"),
        nullable=False,
    )

    dimension = relationship("Dimension", back_populates="file_tags")
    file_relations = relationship(
        "FileTagRelation", back_populates="tag", cascade="all, delete-orphan"
    )


class FileTagRelation(SyncStatusMixin, Base):
    __tablename__ = "file_tag_relations"

    file_id = Column(String, ForeignKey("files.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("file_tags.id", ondelete="CASCADE"), primary_key=True)

    file = relationship("File", back_populates="tag_relations")
    tag = relationship("Tag", back_populates="file_relations")
