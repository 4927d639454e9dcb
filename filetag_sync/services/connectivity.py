"""Network connectivity probe for the sync scheduler."""

import logging

import httpx

from filetag_sync.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Reports whether the cloud service host is reachable.

    Any HTTP response (including 4xx/5xx) counts as online; only transport
    failures and an unusable base URL count as offline. Never raises.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.probe_url = self.settings.cloud_api_base_url

    async def is_online(self) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.connectivity_timeout_seconds
            ) as client:
                await client.head(self.probe_url)
        except (httpx.TransportError, httpx.InvalidURL) as e:
            logger.debug(f"Connectivity probe failed for {self.probe_url}: {e}")
            return False
        return True
