"""HTTP client for the cloud analysis service.

The cloud keeps its own numeric ids for dimensions and tags; this client only
moves JSON back and forth. Identifier remapping lives in IdentifierCache.
"""

import logging
from typing import Any, Protocol

import httpx

from filetag_sync.config import Settings, get_settings
from filetag_sync.core.exceptions import (
    CloudPermissionError,
    CloudRequestError,
    CloudUnavailableError,
)

logger = logging.getLogger(__name__)

# PostgreSQL insufficient_privilege, surfaced by row-level security rejections
PERMISSION_DENIED_CODE = "42501"

BATCH_SYNC_KEYS = frozenset(
    {
        "dimensions",
        "tags",
        "files",
        "tag_relations",
        "dimension_expansions",
        "tag_expansions",
    }
)


class CloudServiceProtocol(Protocol):
    """Interface the sync engine needs from the cloud service."""

    async def fetch_dimensions(self, language: str) -> list[dict[str, Any]]:
        """Return every cloud dimension for ``language`` as ``{id, name, ...}``."""
        ...

    async def fetch_tags(self, language: str) -> list[dict[str, Any]]:
        """Return every cloud tag for ``language`` as ``{id, name, dimension_id}``."""
        ...

    async def batch_sync(self, payload: dict[str, list[dict]], language: str) -> dict[str, Any]:
        """Upload a batch. Success means every included array was accepted."""
        ...


def _error_code(response: httpx.Response) -> str | None:
    """Extract a service error code (``code`` field) from a JSON error body."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    code = body.get("code")
    error = body.get("error")
    if code is None and isinstance(error, dict):
        code = error.get("code")
    return str(code) if code is not None else None


def _raise_for_response(response: httpx.Response) -> None:
    """Translate a non-2xx response into the CloudSyncError hierarchy."""
    if response.is_success:
        return

    status = response.status_code
    code = _error_code(response)
    message = f"Cloud service returned {status}: {response.text[:300]}"

    if status in (401, 403) or code == PERMISSION_DENIED_CODE:
        raise CloudPermissionError(message, status_code=status, code=code)
    if status == 429 or status >= 500:
        raise CloudUnavailableError(message, status_code=status, code=code)
    raise CloudRequestError(message, status_code=status, code=code)


def _unwrap_list(body: Any) -> list[dict[str, Any]]:
    """Accept either a bare JSON array or ``{"data": [...]}``."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        return list(body.get("data") or [])
    return []


class CloudAnalysisClient:
    """Async client for the cloud analysis service."""

    def __init__(self, settings: Settings | None = None):
        """Initialize client.

        Args:
            settings: Optional settings override (uses get_settings() if None).
        """
        self.settings = settings or get_settings()
        self.base_url = self.settings.cloud_api_base_url.rstrip("/")
        self.timeout = self.settings.cloud_timeout_seconds

    def _headers(self) -> dict[str, str]:
        """Build headers with Bearer token if configured."""
        headers = {"Content-Type": "application/json"}
        if self.settings.cloud_api_key:
            headers["Authorization"] = f"Bearer {self.settings.cloud_api_key}"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
                response = await client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling cloud service {method} {path}: {e}")
            raise CloudUnavailableError("Cloud service request timed out") from e
        except httpx.TransportError as e:
            logger.error(f"Cannot reach cloud service at {self.base_url}: {e}")
            raise CloudUnavailableError(f"Cannot reach cloud service at {self.base_url}") from e

        _raise_for_response(response)
        if not response.content:
            return {}
        return response.json()

    async def fetch_dimensions(self, language: str) -> list[dict[str, Any]]:
        body = await self._request("GET", "/dimensions", params={"language": language})
        return _unwrap_list(body)

    async def fetch_tags(self, language: str) -> list[dict[str, Any]]:
        body = await self._request("GET", "/tags", params={"language": language})
        return _unwrap_list(body)

    async def batch_sync(self, payload: dict[str, list[dict]], language: str) -> dict[str, Any]:
        """Upload any subset of the batch arrays in one request.

        Args:
            payload: Mapping of batch key (see BATCH_SYNC_KEYS) to records
            language: Taxonomy language the records belong to

        Returns:
            Response body from the service

        Raises:
            ValueError: If payload carries an unknown key
            CloudSyncError: On transport or service failure
        """
        unknown = set(payload) - BATCH_SYNC_KEYS
        if unknown:
            raise ValueError(f"Unknown batch sync keys: {sorted(unknown)}")

        counts = {key: len(records) for key, records in payload.items()}
        logger.debug(f"Uploading batch {counts} [{language}]")
        body = await self._request(
            "POST", "/batch-sync", json={"language": language, **payload}
        )
        return body if isinstance(body, dict) else {"result": body}
