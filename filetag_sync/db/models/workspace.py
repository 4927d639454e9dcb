"""Workspace directory and analyzed file models."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from filetag_sync.db.database import Base
from filetag_sync.db.models.base import SyncStatusMixin, TimestampMixin, generate_uuid


class WorkspaceDirectory(TimestampMixin, Base):
    """A watched directory. Only files in SPEEDY workspaces are mirrored."""

    __tablename__ = "workspace_directories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    path = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default="SPEEDY")  # "SPEEDY" | "PRIVATE"
    recursive = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_scan_at = Column(DateTime, nullable=True)

    files = relationship("File", back_populates="workspace", cascade="all, delete-orphan")


class File(SyncStatusMixin, TimestampMixin, Base):
    """An analyzed file.

    ``id`` is local (path + workspace); the cloud keys files by ``content_hash``.
    """

    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("path", "workspace_id", name="uq_files_path_workspace"),
        Index("idx_files_sync", "sync_status", "is_analyzed"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    content_hash = Column(String, nullable=False, index=True)
    path = Column(String, nullable=False)
    name = Column(String, nullable=False)
    smart_name = Column(String, nullable=True)
    size = Column(Integer, nullable=False, default=0)
    type = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)

    # Analysis results
    author = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    language = Column(String, nullable=True)
    quality_score = Column(Float, nullable=True)
    quality_confidence = Column(Float, nullable=True)
    quality_criteria = Column(Text, nullable=True)  # JSON object
    quality_reasoning = Column(Text, nullable=True)
    grouping_reason = Column(String, nullable=True, default="collection")
    grouping_confidence = Column(Float, nullable=True, default=0.5)
    multimodal_content = Column(Text, nullable=True)

    is_analyzed = Column(Boolean, nullable=False, default=False)
    analysis_error = Column(Text, nullable=True)
    last_analyzed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    workspace_id = Column(
        Integer,
        ForeignKey("workspace_directories.id", ondelete="CASCADE"),
        nullable=False,
    )

    workspace = relationship("WorkspaceDirectory", back_populates="files")
    tag_relations = relationship(
        "FileTagRelation", back_populates="file", cascade="all, delete-orphan"
    )
