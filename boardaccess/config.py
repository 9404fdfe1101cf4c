from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from boardaccess.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the access-control service."""

    database_url: str = env_field(
        "postgresql://localhost:5432/boardaccess", "DATABASE_URL"
    )
    shared_fs_root: str = env_field("/srv/boardaccess", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Disable background jobs and other non-deterministic behavior.",
    )
    admin_password_hash: str | None = env_field(
        None,
        "ADMIN_PASSWORD_HASH",
        description="argon2id digest of the property admin secret; generate with scripts/hash_admin_secret.py",
    )
    site_url: str | None = env_field(
        None,
        "SITE_URL",
        description="Public base URL used for short links and QR code destinations",
    )
    admin_session_retention_days: int = env_field(7, "ADMIN_SESSION_RETENTION_DAYS")
    resident_session_ttl_days: int = env_field(90, "RESIDENT_SESSION_TTL_DAYS")
    short_link_max_attempts: int = env_field(5, "SHORT_LINK_MAX_ATTEMPTS")
    resident_sweep_interval_seconds: int = env_field(
        3600,
        "RESIDENT_SWEEP_INTERVAL_SECONDS",
        description="Interval between expired resident session sweeps",
    )
    cors_allow_origins: list[str] = env_field([], "CORS_ALLOW_ORIGINS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("site_url")
    @classmethod
    def _strip_site_url(cls, value: str | None) -> str | None:
        if not value:
            return None
        return value.rstrip("/")

    @field_validator("admin_password_hash")
    @classmethod
    def _warn_missing_hash(cls, value: str | None) -> str | None:
        if not value:
            # Admin login stays closed until a hash is configured
            logger.warning("admin_password_hash_missing")
            return None
        return value

    @field_validator(
        "admin_session_retention_days",
        "resident_session_ttl_days",
        "short_link_max_attempts",
        "resident_sweep_interval_seconds",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
