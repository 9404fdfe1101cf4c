from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import List, Optional, Protocol

from boardaccess.logging import get_logger
from boardaccess.service.errors import ServerError, ShortLinkCodeExhaustedError
from boardaccess.service.qr_url import build_qr_code_url
from boardaccess.storage.errors import UniqueConstraintViolation
from boardaccess.storage.models import AccessToken, Property, ShortLink

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


class ShortLinkStore(Protocol):
    def create_short_link(
        self,
        code: str,
        property_id: int,
        campaign: str,
        *,
        access_token_id: Optional[int] = None,
        unit: Optional[str] = None,
        content: Optional[str] = None,
        label: Optional[str] = None,
    ) -> ShortLink: ...

    def get_short_link(self, link_id: int) -> Optional[ShortLink]: ...

    def get_short_link_by_code(
        self, code: str, *, active_only: bool = True
    ) -> Optional[ShortLink]: ...

    def deactivate_short_link(self, link_id: int) -> None: ...

    def list_short_links(self, property_id: int) -> List[ShortLink]: ...

    def get_property(self, property_id: int) -> Optional[Property]: ...

    def get_access_token(self, token_id: int) -> Optional[AccessToken]: ...


@dataclass(frozen=True)
class CreatedShortLink:
    id: int
    code: str
    short_url: str


def generate_code() -> str:
    """Return 8 URL-safe characters (6 random bytes)."""
    return secrets.token_urlsafe(6)


class ShortLinkResolver:
    """Maps short codes printed on signage to property destinations."""

    def __init__(
        self,
        store: ShortLinkStore,
        *,
        site_url: Optional[str],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.store = store
        self.site_url = site_url.rstrip("/") if site_url else None
        self.max_attempts = max_attempts

    def _require_site_url(self) -> str:
        if not self.site_url:
            raise ServerError("SITE_URL must be configured to build short links")
        return self.site_url

    def create(
        self,
        property_id: int,
        campaign: str,
        *,
        access_token_id: Optional[int] = None,
        unit: Optional[str] = None,
        content: Optional[str] = None,
        label: Optional[str] = None,
    ) -> CreatedShortLink:
        site_url = self._require_site_url()
        for attempt in range(1, self.max_attempts + 1):
            code = generate_code()
            try:
                link = self.store.create_short_link(
                    code,
                    property_id,
                    campaign,
                    access_token_id=access_token_id,
                    unit=unit,
                    content=content,
                    label=label,
                )
            except UniqueConstraintViolation:
                logger.warning(
                    "short_link_code_collision",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                )
                continue
            logger.info(
                "short_link_created",
                short_link_id=link.id,
                property_id=property_id,
                campaign=campaign,
            )
            return CreatedShortLink(
                id=link.id, code=link.code, short_url=f"{site_url}/s/{link.code}"
            )
        logger.error("short_link_code_exhausted", max_attempts=self.max_attempts)
        raise ShortLinkCodeExhaustedError(
            "failed to generate a unique short link code",
            detail={"attempts": self.max_attempts},
        )

    def resolve(self, code: Optional[str]) -> Optional[ShortLink]:
        if not code:
            return None
        return self.store.get_short_link_by_code(code, active_only=True)

    def get(self, link_id: int) -> Optional[ShortLink]:
        return self.store.get_short_link(link_id)

    def deactivate(self, link_id: int) -> None:
        self.store.deactivate_short_link(link_id)
        logger.info("short_link_deactivated", short_link_id=link_id)

    def list_for_property(self, property_id: int) -> List[ShortLink]:
        return self.store.list_short_links(property_id)

    def build_redirect_url(self, link: ShortLink, *, base_url: Optional[str] = None) -> str:
        base = (base_url or self._require_site_url()).rstrip("/")
        prop = self.store.get_property(link.property_id)
        if prop is None:
            logger.warning(
                "short_link_property_missing",
                short_link_id=link.id,
                property_id=link.property_id,
            )
            return f"{base}/"

        auth_token = None
        if link.access_token_id is not None:
            record = self.store.get_access_token(link.access_token_id)
            if record and record.is_active and record.property_id == prop.id:
                auth_token = record.token
            else:
                logger.info(
                    "short_link_access_token_dropped",
                    short_link_id=link.id,
                    access_token_id=link.access_token_id,
                )

        return build_qr_code_url(
            base,
            prop.hash,
            utm_campaign=link.campaign,
            auth_token=auth_token,
            unit=link.unit,
            utm_content=link.content,
        )
