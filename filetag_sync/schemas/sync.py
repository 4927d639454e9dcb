"""Sync API schemas."""

from datetime import datetime

from pydantic import BaseModel


class PendingCounts(BaseModel):
    """Rows still waiting for upload, per mirrored table."""

    files: int
    tags: int
    tag_relations: int
    dimension_expansions: int
    tag_expansions: int
    total: int


class CycleReportResponse(BaseModel):
    """Outcome of one sync cycle."""

    cycle_id: str
    phase: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    upload_calls: int = 0
    dimensions_uploaded: int = 0
    tags_uploaded: int = 0
    tags_skipped: int = 0
    files_uploaded: int = 0
    relations_uploaded: int = 0
    relations_skipped: int = 0
    relations_retried: int = 0
    dimension_expansions_uploaded: int = 0
    tag_expansions_uploaded: int = 0
    pan_expansions_suppressed: int = 0
    dimension_expansions_cleaned: int = 0
    tag_expansions_cleaned: int = 0


class SyncStatusResponse(BaseModel):
    """Worker snapshot plus pending-work counts."""

    enabled: bool
    state: str
    running: bool
    interval_seconds: int
    language: str
    cache_initialized: bool
    cached_dimensions: int
    cached_tags: int
    backoff_remaining_seconds: float
    escalated_records: int
    last_report: CycleReportResponse | None = None
    last_error: str | None = None
    last_success_at: datetime | None = None
    last_skip_reason: str | None = None
    pending: PendingCounts


class SyncRunResponse(BaseModel):
    """Result of a manually triggered cycle."""

    ran: bool
    report: CycleReportResponse | None = None
    skipped_reason: str | None = None
    error: str | None = None
