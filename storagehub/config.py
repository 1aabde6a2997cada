"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "0.1.0"

DEFAULT_CHUNK_SIZE_BYTES = 1024 * 89


class Settings(BaseSettings):
    """StorageHub settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/storagehub.db"
    list_limit: int = Field(default=1000, ge=1)

    # Remote endpoint
    api_base_url: str = ""
    api_post_path: str = "?uploadType=resumable&name="
    api_put_path: str = "?upload_id="
    api_key: str = ""
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    verify_tls: bool = True

    # Upload queue
    chunk_size_bytes: int = Field(default=DEFAULT_CHUNK_SIZE_BYTES, ge=1)
    error_threshold: int = Field(default=100, ge=1)
    retry_delay_seconds: int = Field(default=15 * 60, ge=0)
    sync_interval_seconds: int = Field(default=0, ge=0)
    sync_on_add: bool = True

    # Server
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)

    @property
    def retry_delay_ms(self) -> int:
        return self.retry_delay_seconds * 1000

    def validate_runtime(self) -> None:
        """Validate settings the upload engine cannot run without."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.api_base_url:
            violations.append("API_BASE_URL must be configured")
        if not self.api_key:
            violations.append("API_KEY must be configured")

        if violations:
            msg = f"Incomplete configuration: {'; '.join(violations)}"
            raise ValueError(msg)
