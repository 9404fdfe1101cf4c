from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol

from boardaccess.logging import get_logger
from boardaccess.service.access_tokens import AccessTokenManager
from boardaccess.storage.models import ResidentSession, utcnow

logger = get_logger(__name__)

DEFAULT_TTL = timedelta(days=90)


class ResidentSessionStore(Protocol):
    def create_resident_session(
        self,
        property_id: int,
        access_token_id: int,
        session_token: str,
        *,
        created_at: datetime,
        expires_at: datetime,
    ) -> ResidentSession: ...

    def get_resident_session_by_token(self, session_token: str) -> Optional[ResidentSession]: ...

    def touch_resident_session(self, session_id: int, last_seen_at: datetime) -> None: ...

    def delete_resident_session(self, session_token: str) -> None: ...

    def delete_expired_resident_sessions(self, now: datetime) -> int: ...

    def list_resident_sessions(self, property_id: int) -> List[ResidentSession]: ...


@dataclass(frozen=True)
class CreatedResidentSession:
    session_token: str
    expires_at: datetime


@dataclass(frozen=True)
class ResidentSessionGrant:
    property_id: int
    session_id: int
    expires_at: datetime


def generate_session_token() -> str:
    """Return 43 URL-safe characters (32 random bytes)."""
    return secrets.token_urlsafe(32)


class ResidentSessionManager:
    """Resident sessions created from a QR scan.

    Expiry is absolute: ``expires_at`` is fixed at creation and validation
    only moves ``last_seen_at``.
    """

    def __init__(
        self,
        store: ResidentSessionStore,
        access_tokens: AccessTokenManager,
        *,
        ttl: timedelta = DEFAULT_TTL,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.access_tokens = access_tokens
        self.ttl = ttl
        self._now = now

    def create(self, property_id: int, access_token_id: int) -> CreatedResidentSession:
        created_at = self._now()
        sess = self.store.create_resident_session(
            property_id,
            access_token_id,
            generate_session_token(),
            created_at=created_at,
            expires_at=created_at + self.ttl,
        )
        logger.info(
            "resident_session_created",
            property_id=property_id,
            session_id=sess.id,
            access_token_id=access_token_id,
        )
        return CreatedResidentSession(
            session_token=sess.session_token, expires_at=sess.expires_at
        )

    def scan(
        self, access_token: Optional[str], property_id: int
    ) -> Optional[CreatedResidentSession]:
        grant = self.access_tokens.validate(access_token, property_id)
        if grant is None:
            return None
        return self.create(grant.property_id, grant.token_id)

    def validate(self, session_token: Optional[str]) -> Optional[ResidentSessionGrant]:
        if not session_token:
            return None
        sess = self.store.get_resident_session_by_token(session_token)
        if sess is None:
            return None
        now = self._now()
        if sess.expires_at <= now:
            logger.info("resident_session_expired", session_id=sess.id)
            return None
        self.store.touch_resident_session(sess.id, now)
        return ResidentSessionGrant(
            property_id=sess.property_id, session_id=sess.id, expires_at=sess.expires_at
        )

    def invalidate(self, session_token: Optional[str]) -> None:
        if not session_token:
            return
        self.store.delete_resident_session(session_token)
        logger.info("resident_session_invalidated")

    def sweep_expired(self) -> int:
        removed = self.store.delete_expired_resident_sessions(self._now())
        if removed:
            logger.info("resident_sessions_swept", count=removed)
        return removed

    def list_active_for_property(self, property_id: int) -> List[ResidentSession]:
        now = self._now()
        return [
            sess
            for sess in self.store.list_resident_sessions(property_id)
            if sess.expires_at > now
        ]
