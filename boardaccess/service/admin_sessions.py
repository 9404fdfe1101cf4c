from __future__ import annotations

import secrets
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

from boardaccess.logging import get_logger
from boardaccess.service.passwords import PasswordVerifier
from boardaccess.storage.models import (
    AdminSession,
    AdminSessionSnapshot,
    ScopedBinding,
    binding_for,
    utcnow,
)

logger = get_logger(__name__)

DEFAULT_RETENTION = timedelta(days=7)


class AdminSessionStore(Protocol):
    def load_admin_sessions(self) -> Optional[AdminSessionSnapshot]: ...

    def save_admin_sessions(
        self, sessions: Dict[str, AdminSession], last_updated: Optional[datetime] = None
    ) -> None: ...


def generate_admin_token() -> str:
    """Return 64 lowercase hex characters (256 bits)."""
    return secrets.token_hex(32)


class AdminSessionManager:
    """Property-scoped admin sessions held in a process-local cache.

    The index is read from the store once at construction and written back
    in full on every create and revoke. Other processes only see those
    writes after a restart or an explicit :meth:`reload`.
    """

    def __init__(
        self,
        store: AdminSessionStore,
        verifier: PasswordVerifier,
        *,
        retention: timedelta = DEFAULT_RETENTION,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.retention = retention
        self._now = now
        self._lock = threading.Lock()
        self._sessions: Dict[str, AdminSession] = {}
        self.reload()

    def reload(self) -> None:
        """Replace the cached index with what the store currently holds."""
        snapshot = self.store.load_admin_sessions()
        sessions: Dict[str, AdminSession] = {}
        if snapshot is not None:
            age = self._now() - snapshot.last_updated
            if age > self.retention:
                # Expiry is store-wide: a stale stamp drops every session
                logger.info(
                    "admin_sessions_expired_on_load",
                    count=len(snapshot.sessions),
                    last_updated=snapshot.last_updated.isoformat(),
                )
            else:
                sessions = dict(snapshot.sessions)
        with self._lock:
            self._sessions = sessions
        logger.debug("admin_sessions_loaded", count=len(sessions))

    def _flush(self) -> None:
        self.store.save_admin_sessions(dict(self._sessions), self._now())

    def create_session(
        self, secret: Optional[str], property_id: Optional[int] = None
    ) -> Optional[str]:
        if property_id is not None and property_id <= 0:
            logger.warning("admin_login_invalid_property", property_id=property_id)
            return None
        if not self.verifier.verify(secret):
            logger.warning("admin_login_failed", property_id=property_id)
            return None
        token = generate_admin_token()
        session = AdminSession(
            token=token, binding=binding_for(property_id), created_at=self._now()
        )
        with self._lock:
            self._sessions[token] = session
            self._flush()
        logger.info(
            "admin_session_created",
            property_id=property_id,
            scope="property" if property_id is not None else "global",
        )
        return token

    def validate(self, token: Optional[str], property_id: Optional[int] = None) -> bool:
        if not token:
            return False
        if property_id is not None and property_id <= 0:
            return False
        with self._lock:
            session = self._sessions.get(token)
        if session is None:
            logger.info("admin_session_unknown")
            return False
        if property_id is None:
            return True
        binding = session.binding
        if isinstance(binding, ScopedBinding) and binding.property_id != property_id:
            logger.warning(
                "admin_session_property_mismatch",
                bound_property_id=binding.property_id,
                requested_property_id=property_id,
            )
            return False
        return True

    def revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            if self._sessions.pop(token, None) is None:
                return
            self._flush()
        logger.info("admin_session_revoked")

    def get_bound_property(self, token: Optional[str]) -> Optional[int]:
        if not token:
            return None
        with self._lock:
            session = self._sessions.get(token)
        return session.property_id if session else None

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)
