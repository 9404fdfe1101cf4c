from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from boardaccess.logging import get_logger
from boardaccess.storage.common import ensure_aware
from boardaccess.storage.models import AccessToken, utcnow

logger = get_logger(__name__)


class AccessTokenStore(Protocol):
    def create_access_token(
        self,
        property_id: int,
        token: str,
        label: str,
        *,
        expires_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> AccessToken: ...

    def get_access_token(self, token_id: int) -> Optional[AccessToken]: ...

    def get_access_token_by_value(self, token: str) -> Optional[AccessToken]: ...

    def set_access_token_active(self, token_id: int, is_active: bool) -> None: ...

    def list_access_tokens(self, property_id: Optional[int] = None) -> List[AccessToken]: ...


@dataclass(frozen=True)
class IssuedAccessToken:
    token_id: int
    token: str


@dataclass(frozen=True)
class AccessGrant:
    property_id: int
    token_id: int


def generate_token() -> str:
    """Return 43 URL-safe characters (32 random bytes)."""
    return secrets.token_urlsafe(32)


class AccessTokenManager:
    """Issues and checks the long-lived tokens printed on QR signage."""

    def __init__(
        self, store: AccessTokenStore, *, now: Callable[[], datetime] = utcnow
    ) -> None:
        self.store = store
        self._now = now

    def issue(
        self, property_id: int, label: str, expires_at: Optional[datetime] = None
    ) -> IssuedAccessToken:
        if expires_at is not None:
            # A naive expiry is taken as UTC
            expires_at = ensure_aware(expires_at)
        record = self.store.create_access_token(
            property_id, generate_token(), label, expires_at=expires_at
        )
        logger.info(
            "access_token_issued",
            property_id=property_id,
            token_id=record.id,
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return IssuedAccessToken(token_id=record.id, token=record.token)

    def validate(self, token: Optional[str], property_id: int) -> Optional[AccessGrant]:
        if not token or property_id <= 0:
            return None
        record = self.store.get_access_token_by_value(token)
        if record is None:
            logger.info("access_token_unknown", property_id=property_id)
            return None
        if not record.is_active:
            logger.info("access_token_inactive", token_id=record.id)
            return None
        if record.expires_at is not None and ensure_aware(record.expires_at) < self._now():
            logger.info("access_token_expired", token_id=record.id)
            return None
        if record.property_id != property_id:
            logger.warning(
                "access_token_property_mismatch",
                token_id=record.id,
                bound_property_id=record.property_id,
                requested_property_id=property_id,
            )
            return None
        return AccessGrant(property_id=record.property_id, token_id=record.id)

    def toggle(self, token_id: int, is_active: bool) -> None:
        self.store.set_access_token_active(token_id, is_active)
        logger.info("access_token_toggled", token_id=token_id, is_active=is_active)

    def get(self, token_id: int) -> Optional[AccessToken]:
        return self.store.get_access_token(token_id)

    def list_for_property(self, property_id: int) -> List[AccessToken]:
        return self.store.list_access_tokens(property_id)

    def list_all(self) -> List[AccessToken]:
        return self.store.list_access_tokens()
