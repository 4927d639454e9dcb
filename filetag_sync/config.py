"""Configuration management using Pydantic settings."""

from functools import lru_cache
from typing import Any, Literal

from pydantic_settings import BaseSettings

# Profile defaults for debug and production runs
PROFILE_DEFAULTS: dict[str, dict[str, Any]] = {
    "debug": {
        # Short polling so local changes show up in the cloud quickly
        "sync_interval_seconds": 3,
    },
    "production": {
        "sync_interval_seconds": 30,
    },
}


class Settings(BaseSettings):
    # Application
    app_name: str = "FileTag Sync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Server (host API)
    host: str = "127.0.0.1"
    port: int = 8765

    # Database
    database_url: str = "sqlite:///./data/filetag.db"

    # Taxonomy
    default_language: str = "zh-CN"
    pan_dimension_ids: list[int] = []  # Local dimension ids exempt from proposal review

    # Cloud sync
    sync_enabled: bool = True
    sync_batch_size: int = 50
    sync_interval_seconds: int | None = None  # None = use profile default
    sync_workspace_type: str = "SPEEDY"
    sync_permission_backoff_minutes: int = 10
    sync_unresolved_escalation_cycles: int = 10

    # Cloud service
    cloud_api_base_url: str = "http://localhost:54321/functions/v1/cloud-analysis"
    cloud_api_key: str = ""
    cloud_timeout_seconds: float = 30.0
    connectivity_timeout_seconds: float = 3.0

    @property
    def profile(self) -> str:
        return "debug" if self.debug else "production"

    def model_post_init(self, __context: Any) -> None:
        """Apply profile defaults after Pydantic initialization."""
        profile = PROFILE_DEFAULTS[self.profile]

        for key, default_value in profile.items():
            current = getattr(self, key, None)
            if current is None:
                object.__setattr__(self, key, default_value)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
