from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from boardaccess.config import get_settings, reset_settings_cache
from boardaccess.logging import get_logger
from boardaccess.service.access_tokens import AccessTokenManager
from boardaccess.service.admin_sessions import AdminSessionManager
from boardaccess.service.passwords import PasswordVerifier
from boardaccess.service.resident_sessions import ResidentSessionManager
from boardaccess.service.short_links import ShortLinkResolver
from boardaccess.storage.memory import MemoryStore
from boardaccess.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a DSN with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(
                    self.settings.database_url, fs_root=self.settings.shared_fs_root
                )
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.password_verifier = PasswordVerifier(self.settings.admin_password_hash)
        self.admin_sessions = AdminSessionManager(
            self.store,
            self.password_verifier,
            retention=timedelta(days=self.settings.admin_session_retention_days),
        )
        self.access_tokens = AccessTokenManager(self.store)
        self.short_links = ShortLinkResolver(
            self.store,
            site_url=self.settings.site_url,
            max_attempts=self.settings.short_link_max_attempts,
        )
        self.resident_sessions = ResidentSessionManager(
            self.store,
            self.access_tokens,
            ttl=timedelta(days=self.settings.resident_session_ttl_days),
        )
        logger.info(
            "runtime_init_completed",
            admin_sessions=self.admin_sessions.active_count(),
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the first check skips the lock once the
    runtime exists, the second prevents two threads building it.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.store, PostgresStore):
            runtime.store.pool.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
