"""
Configuration and settings for the rider roster service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_CORS_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_env: str = Field(default="development")
    api_prefix: str = Field(default="/api")

    # MongoDB
    mongodb_uri: Optional[str] = Field(default=None)
    mongodb_db_name: str = Field(default="riderdb")
    mongodb_collection: str = Field(default="riders")
    mongodb_max_pool_size: int = Field(default=10, ge=1)
    mongodb_server_selection_timeout_ms: int = Field(default=5000, ge=0)
    mongodb_socket_timeout_ms: int = Field(default=45000, ge=0)

    # Local fallback snapshot (JSON array of riders). Unset disables fallback.
    rider_snapshot_path: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)
    seed_on_startup: bool = Field(default=True)
    request_logging: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    # HTTP
    cors_origin: str = Field(default="*")
    max_body_bytes: int = Field(default=50 * 1024 * 1024, ge=1)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5001)

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in {"prod", "production"}

    @property
    def cors_origins(self) -> list[str]:
        if self.is_production:
            return [o.strip() for o in self.cors_origin.split(",") if o.strip()]
        return list(DEV_CORS_ORIGINS)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
