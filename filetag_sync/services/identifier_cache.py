"""Name-keyed map from local taxonomy rows to cloud identifiers.

Local and cloud databases assign their own ids to the same logical dimension
or tag. Rows are matched by natural key instead:

- dimension: ``name``
- tag: ``(cloud dimension id, name)``

Lookups return ``None`` when the key is unresolved. A cloud id of ``0`` is a
valid resolution, so callers must test ``is None``, never truthiness.
"""

import logging
from typing import Any

from filetag_sync.services.cloud_client import CloudServiceProtocol

logger = logging.getLogger(__name__)


def tag_key(cloud_dimension_id: int, tag_name: str) -> str:
    """Cache key for a tag: ``"<cloud dimension id>:<tag name>"``."""
    return f"{cloud_dimension_id}:{tag_name}"


class IdentifierCache:
    """Process-wide dimension/tag id maps for one active language.

    Starts uninitialized. ``refresh`` rebuilds both maps from scratch; a failed
    refresh keeps the previous maps (stale but usable) and leaves
    ``initialized`` untouched so the scheduler retries it on the next tick.
    """

    def __init__(self, cloud: CloudServiceProtocol | None = None):
        self.cloud = cloud
        self.language: str | None = None
        self.initialized = False
        self._dimensions: dict[str, int] = {}
        self._tags: dict[str, int] = {}

    @classmethod
    def from_maps(
        cls,
        dimensions: dict[str, int],
        tags: dict[str, int] | None = None,
        cloud: CloudServiceProtocol | None = None,
    ) -> "IdentifierCache":
        """Build an initialized cache from a fixed snapshot.

        Args:
            dimensions: dimension name -> cloud dimension id
            tags: ``tag_key(...)`` -> cloud tag id
            cloud: Optional client used by later refreshes
        """
        cache = cls(cloud)
        cache._dimensions = dict(dimensions)
        cache._tags = dict(tags or {})
        cache.initialized = True
        return cache

    @property
    def dimension_count(self) -> int:
        return len(self._dimensions)

    @property
    def tag_count(self) -> int:
        return len(self._tags)

    async def refresh(self, language: str) -> bool:
        """Replace both maps with the cloud's current dimensions and tags.

        Returns:
            True if the maps were rebuilt, False if the fetch failed.
        """
        if self.cloud is None:
            logger.warning("No cloud client configured, keeping current id maps")
            return False

        logger.info(f"Refreshing cloud id maps for [{language}]")
        try:
            cloud_dimensions = await self.cloud.fetch_dimensions(language)
            cloud_tags = await self.cloud.fetch_tags(language)
            dimensions = _build_dimension_map(cloud_dimensions)
            tags = _build_tag_map(cloud_tags)
        except Exception as e:
            logger.error(f"Failed to refresh cloud id maps: {e}")
            return False

        self._dimensions = dimensions
        self._tags = tags
        self.language = language
        self.initialized = True
        logger.info(
            f"Cloud id maps refreshed (dimensions={len(dimensions)}, tags={len(tags)})"
        )
        return True

    def resolve_dimension(self, name: str) -> int | None:
        """Cloud id for a dimension name, or None if unresolved."""
        return self._dimensions.get(name)

    def resolve_tag(self, cloud_dimension_id: int, tag_name: str) -> int | None:
        """Cloud id for a tag under a cloud dimension, or None if unresolved."""
        return self._tags.get(tag_key(cloud_dimension_id, tag_name))

    def resolve_tag_by_names(self, dimension_name: str, tag_name: str) -> int | None:
        """Two-step lookup: dimension name -> cloud dimension id -> cloud tag id."""
        cloud_dimension_id = self.resolve_dimension(dimension_name)
        if cloud_dimension_id is None:
            return None
        return self.resolve_tag(cloud_dimension_id, tag_name)


def _build_dimension_map(records: list[dict[str, Any]]) -> dict[str, int]:
    return {record["name"]: int(record["id"]) for record in records}


def _build_tag_map(records: list[dict[str, Any]]) -> dict[str, int]:
    return {
        tag_key(int(record["dimension_id"]), record["name"]): int(record["id"])
        for record in records
    }
