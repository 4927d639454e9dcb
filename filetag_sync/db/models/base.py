"""Shared model utilities and mixins."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer


def generate_uuid() -> str:
    return str(uuid.uuid4())


class SyncStatus(enum.IntEnum):
    """Cloud mirroring state of a local row.

    SYNCING is reserved and never written; rows go straight from
    PENDING to SYNCED once their upload call has returned.
    """

    PENDING = 0
    SYNCING = 1
    SYNCED = 2


class TimestampMixin:
    """Provides a standard ``created_at`` column."""

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class SyncStatusMixin:
    """Provides the ``sync_status`` column shared by every mirrored table."""

    sync_status = Column(Integer, nullable=False, default=SyncStatus.PENDING, index=True)
