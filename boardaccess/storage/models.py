from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Property:
    id: int
    slug: str
    hash: str
    name: str
    contact_requires_auth: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ScopedBinding:
    """Admin session valid only for one property."""

    property_id: int


@dataclass(frozen=True)
class GlobalBinding:
    """Admin session valid for every property.

    Only sessions created before per-property login existed carry this
    binding. New code should not issue it for anything but the legacy
    global login route.
    """


GLOBAL_BINDING = GlobalBinding()

PropertyBinding = Union[ScopedBinding, GlobalBinding]


def binding_for(property_id: Optional[int]) -> PropertyBinding:
    if property_id is None:
        return GLOBAL_BINDING
    return ScopedBinding(property_id=int(property_id))


@dataclass
class AdminSession:
    token: str
    binding: PropertyBinding
    created_at: datetime = field(default_factory=utcnow)

    @property
    def property_id(self) -> Optional[int]:
        if isinstance(self.binding, ScopedBinding):
            return self.binding.property_id
        return None


@dataclass
class AdminSessionSnapshot:
    """Everything the durable admin session state holds."""

    sessions: dict[str, AdminSession]
    last_updated: datetime


@dataclass
class AccessToken:
    id: int
    property_id: int
    token: str
    label: str
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None


@dataclass
class ShortLink:
    id: int
    code: str
    property_id: int
    campaign: str
    access_token_id: Optional[int] = None
    unit: Optional[str] = None
    content: Optional[str] = None
    label: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ResidentSession:
    id: int
    property_id: int
    access_token_id: int
    session_token: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)
    last_seen_at: Optional[datetime] = None
