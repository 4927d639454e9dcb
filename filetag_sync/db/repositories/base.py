"""Generic base repository for mirrored SQLAlchemy models."""

from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from filetag_sync.db.models import SyncStatus

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Generic base repository for tables carrying a ``sync_status`` column.

    Repositories never commit; the sync phases own transaction boundaries,
    so each phase's status writes land (or roll back) as one unit.
    """

    model: type[T]

    def __init__(self, db: Session) -> None:
        self.db = db

    # --- Retrieval ---

    def list_pending(self, limit: int) -> list[T]:
        """Oldest-first pending rows, capped at ``limit``."""
        stmt = (
            select(self.model)
            .where(self.model.sync_status == SyncStatus.PENDING)
            .order_by(self.model.id)
            .limit(limit)
        )
        return list(self.db.scalars(stmt).all())

    def count_pending(self) -> int:
        """Count rows still waiting for upload."""
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(self.model.sync_status == SyncStatus.PENDING)
        )
        return self.db.scalar(stmt) or 0

    # --- Status updates (never commit) ---

    def mark_synced(self, ids: Sequence[Any]) -> int:
        """Batch ``UPDATE … SET sync_status = SYNCED WHERE id IN (…)``.

        Returns:
            Number of rows updated.
        """
        if not ids:
            return 0
        result = self.db.execute(
            update(self.model)
            .where(self.model.id.in_(list(ids)))
            .values(sync_status=SyncStatus.SYNCED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
