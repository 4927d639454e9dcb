"""Dependency-ordered upload of one sync cycle.

A cycle walks a fixed sequence of phases:

    DIMENSIONS -> TAGS -> FILES_RELATIONS -> EXPANSIONS -> CLEANUP -> DONE

The cloud validates references, so a tag is only sent after its dimension
exists remotely, and a relation only after both its file and its tag do.
Each phase commits its own status writes. An upload failure propagates out
of ``run_cycle`` and the remaining phases do not run; rows not yet marked
synced are simply selected again on the next cycle.
"""

import enum
import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Hashable, Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filetag_sync.config import Settings, get_settings
from filetag_sync.db.models import Dimension, DimensionExpansion, File, Tag, TagExpansion
from filetag_sync.db.repositories import (
    DimensionExpansionRepository,
    FileRepository,
    FileTagRelationRepository,
    TagExpansionRepository,
    TagRepository,
)
from filetag_sync.services.batch_selector import BatchSelector
from filetag_sync.services.cloud_client import CloudServiceProtocol
from filetag_sync.services.expansion_cleanup import ExpansionCleanup
from filetag_sync.services.identifier_cache import IdentifierCache

logger = logging.getLogger(__name__)


class SyncPhase(str, enum.Enum):
    DIMENSIONS = "dimensions"
    TAGS = "tags"
    FILES_RELATIONS = "files_relations"
    EXPANSIONS = "expansions"
    CLEANUP = "cleanup"
    DONE = "done"


# -----------------------------------------------------------------------------
# Payload builders
# -----------------------------------------------------------------------------


def parse_json_column(value: Any) -> Any:
    """Decode a JSON text column.

    Empty values decode to None. Malformed JSON raises ``json.JSONDecodeError``;
    the record cannot be uploaded in a shape the cloud accepts.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        return json.loads(value)
    return value


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def dimension_record(dimension: Dimension) -> dict[str, Any]:
    return {
        "name": dimension.name,
        "level": dimension.level,
        "description": dimension.description,
        "is_ai_generated": bool(dimension.is_ai_generated),
        "trigger_conditions": parse_json_column(dimension.trigger_conditions),
        "applicable_file_types": parse_json_column(dimension.applicable_file_types),
        "context_hints": parse_json_column(dimension.context_hints),
        "created_at": _iso(dimension.created_at),
    }


def tag_record(tag: Tag, cloud_dimension_id: int) -> dict[str, Any]:
    return {
        "name": tag.name,
        "dimension_id": cloud_dimension_id,
        "created_at": _iso(tag.created_at),
    }


def file_record(file: File) -> dict[str, Any]:
    """Cloud file record. The cloud keys files by content hash, not local id."""
    return {
        "id": file.content_hash,
        "smart_name": file.smart_name,
        "size": file.size,
        "author": file.author,
        "description": file.description,
        "content": file.content,
        "language": file.language,
        "quality_score": file.quality_score,
        "quality_confidence": file.quality_confidence,
        "quality_criteria": parse_json_column(file.quality_criteria),
        "quality_reasoning": file.quality_reasoning,
        "grouping_reason": file.grouping_reason,
        "grouping_confidence": file.grouping_confidence,
        "multimodal_content": file.multimodal_content,
        "last_analyzed_at": _iso(file.last_analyzed_at),
    }


def dimension_expansion_record(expansion: DimensionExpansion) -> dict[str, Any]:
    return {
        "name": expansion.name,
        "level": expansion.level,
        "tags": parse_json_column(expansion.tags),
        "trigger_conditions": parse_json_column(expansion.trigger_conditions),
        "description": expansion.description,
        "created_at": _iso(expansion.created_at),
    }


def tag_expansion_record(expansion: TagExpansion, dimension_id: int) -> dict[str, Any]:
    return {
        "name": expansion.name,
        "dimension_id": dimension_id,
        "created_at": _iso(expansion.created_at),
    }


def build_dimension_payload(tags: Iterable[Tag]) -> list[dict[str, Any]]:
    """One record per distinct dimension referenced by ``tags``."""
    seen: dict[int, Dimension] = {}
    for tag in tags:
        seen.setdefault(tag.dimension_id, tag.dimension)
    return [dimension_record(dimension) for dimension in seen.values()]


def build_file_payload(files: Iterable[File]) -> list[dict[str, Any]]:
    """One record per distinct content hash, first file wins."""
    records: dict[str, dict[str, Any]] = {}
    for file in files:
        if file.content_hash not in records:
            records[file.content_hash] = file_record(file)
    return list(records.values())


# -----------------------------------------------------------------------------
# Cycle state
# -----------------------------------------------------------------------------


class MappingMissTracker:
    """Counts consecutive cycles in which a record failed to resolve.

    Unresolved records are never force-marked synced. Once a record has
    missed ``escalate_after`` cycles in a row the log line is raised from
    warning to error so a stuck row is visible. Records that a completed
    cycle no longer touches (deleted locally, or resolved elsewhere) are
    forgotten by ``prune``.
    """

    def __init__(self, escalate_after: int = 10):
        self.escalate_after = escalate_after
        self._misses: dict[Hashable, int] = {}
        self._seen: set[Hashable] = set()

    def begin_cycle(self) -> None:
        self._seen.clear()

    def miss(self, key: Hashable, message: str) -> int:
        self._seen.add(key)
        count = self._misses.get(key, 0) + 1
        self._misses[key] = count
        if count >= self.escalate_after:
            logger.error(f"{message} (unresolved for {count} consecutive cycles)")
        else:
            logger.warning(message)
        return count

    def hit(self, key: Hashable) -> None:
        self._seen.add(key)
        self._misses.pop(key, None)

    def prune(self) -> int:
        """Drop counters for records not seen since ``begin_cycle``."""
        stale = [key for key in self._misses if key not in self._seen]
        for key in stale:
            del self._misses[key]
        return len(stale)

    def count(self, key: Hashable) -> int:
        return self._misses.get(key, 0)

    @property
    def escalated(self) -> int:
        """Number of records currently past the escalation threshold."""
        return sum(1 for count in self._misses.values() if count >= self.escalate_after)


@dataclass
class CycleReport:
    """Counters for one cycle. ``phase`` is the last phase entered."""

    cycle_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None
    phase: SyncPhase = SyncPhase.DIMENSIONS
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

    @property
    def completed(self) -> bool:
        return self.phase is SyncPhase.DONE

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["phase"] = self.phase.value
        data["started_at"] = _iso(self.started_at)
        data["finished_at"] = _iso(self.finished_at)
        return data


@dataclass
class CycleContext:
    """Batch carried between the phases of one cycle."""

    db: Session
    selector: BatchSelector
    report: CycleReport
    files: list[File] = field(default_factory=list)
    tags: list[Tag] = field(default_factory=list)
    # A stale cache is refreshed again by the next phase that remaps ids
    stale: bool = False
    refreshed: bool = False


# -----------------------------------------------------------------------------
# Executor
# -----------------------------------------------------------------------------


class PhaseExecutor:
    """Runs sync cycles against a cloud service.

    The executor is long-lived: it owns the identifier cache and the mapping
    miss counters. Each cycle gets its own database session.
    """

    def __init__(
        self,
        cloud: CloudServiceProtocol,
        cache: IdentifierCache,
        settings: Settings | None = None,
        misses: MappingMissTracker | None = None,
    ):
        """Initialize executor.

        Args:
            cloud: Cloud service used for uploads.
            cache: Identifier cache shared with the scheduler.
            settings: Optional settings override (uses get_settings() if None).
            misses: Optional miss tracker (one is created if None).
        """
        self.cloud = cloud
        self.cache = cache
        self.settings = settings or get_settings()
        self.misses = misses or MappingMissTracker(
            self.settings.sync_unresolved_escalation_cycles
        )
        self._handlers: dict[SyncPhase, Callable[[CycleContext], Awaitable[SyncPhase]]] = {
            SyncPhase.DIMENSIONS: self._sync_dimensions,
            SyncPhase.TAGS: self._sync_tags,
            SyncPhase.FILES_RELATIONS: self._sync_files_and_relations,
            SyncPhase.EXPANSIONS: self._sync_expansions,
            SyncPhase.CLEANUP: self._cleanup_expansions,
        }

    @property
    def language(self) -> str:
        return self.settings.default_language

    async def run_cycle(self, db: Session, report: CycleReport | None = None) -> CycleReport:
        """Run every phase in order.

        Args:
            db: Session the cycle reads and writes through.
            report: Optional report to fill (lets the caller see the phase
                reached when the cycle raises).

        Raises:
            Whatever the failing phase raised. Phases already committed stay
            committed; the caller discards the session.
        """
        report = report or CycleReport()
        ctx = CycleContext(
            db=db,
            selector=BatchSelector(
                db,
                batch_size=self.settings.sync_batch_size,
                workspace_type=self.settings.sync_workspace_type,
            ),
            report=report,
            stale=not self.cache.initialized,
        )
        self.misses.begin_cycle()

        phase = SyncPhase.DIMENSIONS
        try:
            while phase is not SyncPhase.DONE:
                report.phase = phase
                phase = await self._handlers[phase](ctx)
        finally:
            report.finished_at = datetime.utcnow()

        self.misses.prune()
        report.phase = SyncPhase.DONE
        return report

    async def _upload(self, ctx: CycleContext, payload: dict[str, list[dict]]) -> None:
        await self.cloud.batch_sync(payload, self.language)
        ctx.report.upload_calls += 1

    async def _refresh(self, ctx: CycleContext) -> bool:
        ok = await self.cache.refresh(self.language)
        ctx.stale = not ok
        ctx.refreshed = ctx.refreshed or ok
        return ok

    async def _refresh_if_stale(self, ctx: CycleContext) -> None:
        if ctx.stale:
            logger.info("Retrying cloud id map refresh before remapping")
            await self._refresh(ctx)

    # --- Phase 1 ---

    async def _sync_dimensions(self, ctx: CycleContext) -> SyncPhase:
        """Select the batch and define every dimension it references."""
        ctx.files = ctx.selector.pending_files()
        ctx.tags = ctx.selector.tags_to_define(ctx.files)

        dimensions = build_dimension_payload(ctx.tags)
        if dimensions:
            await self._upload(ctx, {"dimensions": dimensions})
            ctx.report.dimensions_uploaded = len(dimensions)
            logger.info(f"Uploaded {len(dimensions)} dimensions")
            await self._refresh(ctx)
        return SyncPhase.TAGS

    # --- Phase 2 ---

    async def _sync_tags(self, ctx: CycleContext) -> SyncPhase:
        """Upload tags under their cloud dimension ids."""
        if not ctx.tags:
            return SyncPhase.FILES_RELATIONS
        await self._refresh_if_stale(ctx)

        records: list[dict[str, Any]] = []
        uploaded_ids: list[int] = []
        for tag in ctx.tags:
            key = ("tag", tag.id)
            dimension_name = tag.dimension.name
            cloud_dimension_id = self.cache.resolve_dimension(dimension_name)
            if cloud_dimension_id is None:
                self.misses.miss(
                    key,
                    f"Skipping tag {tag.name!r}: dimension {dimension_name!r} "
                    "has no cloud id",
                )
                ctx.report.tags_skipped += 1
                continue
            self.misses.hit(key)
            records.append(tag_record(tag, cloud_dimension_id))
            uploaded_ids.append(tag.id)

        if not records:
            return SyncPhase.FILES_RELATIONS

        await self._upload(ctx, {"tags": records})
        TagRepository(ctx.db).mark_synced(uploaded_ids)
        ctx.db.commit()
        ctx.report.tags_uploaded = len(records)
        logger.info(f"Uploaded {len(records)} tags")

        await self._refresh(ctx)
        return SyncPhase.FILES_RELATIONS

    # --- Phase 3 ---

    async def _sync_files_and_relations(self, ctx: CycleContext) -> SyncPhase:
        """Upload files and their relations in a single call.

        Every file of the batch is marked synced once the call succeeds. A
        relation whose tag does not resolve stays pending on its own and is
        picked up again by ``_retry_relations`` once the tag resolves, so a
        stuck tag never holds a file slot in the batch.
        """
        if ctx.files:
            await self._refresh_if_stale(ctx)

        file_ids = [file.id for file in ctx.files]
        files = build_file_payload(ctx.files)

        relations: list[dict[str, Any]] = []
        synced_pairs: list[tuple[str, int]] = []
        seen: set[tuple[str, int]] = set()

        def add_relation(file_id: str, tag_id: int, content_hash: str, cloud_tag_id: int):
            synced_pairs.append((file_id, tag_id))
            pair = (content_hash, cloud_tag_id)
            if pair not in seen:
                seen.add(pair)
                relations.append({"file_id": content_hash, "tag_id": cloud_tag_id})

        for file_id, tag_id, content_hash, tag_name, dimension_name in (
            ctx.selector.relation_snapshot(file_ids)
        ):
            key = ("relation", file_id, tag_id)
            cloud_tag_id = self.cache.resolve_tag_by_names(dimension_name, tag_name)
            if cloud_tag_id is None:
                self.misses.miss(
                    key,
                    f"Skipping relation {content_hash[:12]} -> {dimension_name}/{tag_name}: "
                    "tag has no cloud id",
                )
                ctx.report.relations_skipped += 1
                continue
            self.misses.hit(key)
            add_relation(file_id, tag_id, content_hash, cloud_tag_id)

        batch_relations = len(relations)
        for file_id, tag_id, content_hash, cloud_tag_id in await self._retry_relations(ctx):
            add_relation(file_id, tag_id, content_hash, cloud_tag_id)

        if not files and not relations:
            return SyncPhase.EXPANSIONS

        payload: dict[str, list[dict]] = {}
        if files:
            payload["files"] = files
        if relations:
            payload["tag_relations"] = relations
        await self._upload(ctx, payload)

        FileRepository(ctx.db).mark_synced(file_ids)
        FileTagRelationRepository(ctx.db).mark_pairs_synced(synced_pairs)
        ctx.db.commit()

        ctx.report.files_uploaded = len(files)
        ctx.report.relations_uploaded = len(relations)
        ctx.report.relations_retried = len(relations) - batch_relations
        logger.info(
            f"Uploaded {len(files)} files and {len(relations)} relations"
            + (f" ({ctx.report.relations_retried} retried)" if ctx.report.relations_retried else "")
        )
        return SyncPhase.EXPANSIONS

    async def _retry_relations(self, ctx: CycleContext) -> list[tuple[str, int, str, int]]:
        """Resolve relations left pending by files synced in earlier cycles.

        Selection is limited to tags that resolve now, so relations to a
        permanently unresolved tag never take the batch's room. The maps are
        refreshed once if nothing else refreshed them this cycle.

        Returns:
            ``(file_id, tag_id, content_hash, cloud_tag_id)`` tuples.
        """
        tags = ctx.selector.pending_relation_tags()
        if not tags:
            return []

        def resolve() -> dict[int, int]:
            resolved = {}
            for tag_id, tag_name, dimension_name in tags:
                cloud_tag_id = self.cache.resolve_tag_by_names(dimension_name, tag_name)
                if cloud_tag_id is not None:
                    resolved[tag_id] = cloud_tag_id
            return resolved

        resolved = resolve()
        if len(resolved) < len(tags) and not ctx.refreshed:
            await self._refresh(ctx)
            resolved = resolve()

        for tag_id, tag_name, dimension_name in tags:
            key = ("relation_tag", tag_id)
            if tag_id in resolved:
                self.misses.hit(key)
            else:
                self.misses.miss(
                    key,
                    f"Relations to {dimension_name}/{tag_name} still pending: "
                    "tag has no cloud id",
                )

        return [
            (file_id, tag_id, content_hash, resolved[tag_id])
            for file_id, tag_id, content_hash in ctx.selector.pending_relations_of_synced_files(
                list(resolved)
            )
        ]

    # --- Expansions ---

    async def _sync_expansions(self, ctx: CycleContext) -> SyncPhase:
        """Upload pending dimension and tag proposals."""
        dimension_expansions = ctx.selector.pending_dimension_expansions()
        tag_expansions = ctx.selector.pending_tag_expansions()

        # Pan dimensions take new tags without review; nothing to propose
        pan_ids = set(self.settings.pan_dimension_ids)
        suppressed = [te.id for te in tag_expansions if te.dimension_id in pan_ids]
        tag_expansions = [te for te in tag_expansions if te.dimension_id not in pan_ids]
        if suppressed:
            TagExpansionRepository(ctx.db).mark_synced(suppressed)
            ctx.db.commit()
            ctx.report.pan_expansions_suppressed = len(suppressed)
            logger.info(f"Marked {len(suppressed)} pan-dimension tag expansions synced")

        if not dimension_expansions and not tag_expansions:
            return SyncPhase.CLEANUP
        if tag_expansions:
            await self._refresh_if_stale(ctx)

        dimension_records = [dimension_expansion_record(de) for de in dimension_expansions]
        tag_records = []
        for te in tag_expansions:
            cloud_dimension_id = self.cache.resolve_dimension(te.dimension.name)
            # Proposals may target a dimension the cloud has not seen yet
            if cloud_dimension_id is None:
                cloud_dimension_id = te.dimension_id
            tag_records.append(tag_expansion_record(te, cloud_dimension_id))

        dimension_ids = [de.id for de in dimension_expansions]
        tag_ids = [te.id for te in tag_expansions]

        payload: dict[str, list[dict]] = {}
        if dimension_records:
            payload["dimension_expansions"] = dimension_records
        if tag_records:
            payload["tag_expansions"] = tag_records
        await self._upload(ctx, payload)

        DimensionExpansionRepository(ctx.db).mark_synced(dimension_ids)
        TagExpansionRepository(ctx.db).mark_synced(tag_ids)
        ctx.db.commit()
        ctx.report.dimension_expansions_uploaded = len(dimension_records)
        ctx.report.tag_expansions_uploaded = len(tag_records)
        logger.info(
            f"Uploaded {len(dimension_records)} dimension and "
            f"{len(tag_records)} tag expansions"
        )
        return SyncPhase.CLEANUP

    # --- Cleanup ---

    async def _cleanup_expansions(self, ctx: CycleContext) -> SyncPhase:
        """Delete proposals the cloud has accepted.

        Runs after every upload of the cycle has committed, so a cleanup
        failure is logged and does not fail the cycle.
        """
        try:
            deleted_dims, deleted_tags = ExpansionCleanup(ctx.db).run()
        except SQLAlchemyError as e:
            ctx.db.rollback()
            logger.error(f"Expansion cleanup failed: {e}")
            return SyncPhase.DONE

        ctx.report.dimension_expansions_cleaned = deleted_dims
        ctx.report.tag_expansions_cleaned = deleted_tags
        return SyncPhase.DONE
