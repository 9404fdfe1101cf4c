from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

MAX_LABEL_LENGTH = 200
MAX_TAG_LENGTH = 100

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
    "short_link_code_exhausted",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


def _strip_required(value: str, field_name: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        raise ValueError(f"{field_name} is required")
    return stripped


def _strip_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


# auth
class AdminLoginRequest(BaseModel):
    password: str = Field(..., max_length=1024)

    @field_validator("password")
    @classmethod
    def _require_password(cls, value: str) -> str:
        if not value:
            raise ValueError("password is required")
        return value


class AdminLoginResponse(BaseModel):
    token: str
    property_id: Optional[int] = None


class VerifyResponse(BaseModel):
    valid: bool


# QR codes
class QRCodeCreateRequest(BaseModel):
    label: str = Field(..., max_length=MAX_LABEL_LENGTH)
    expires_at: Optional[datetime] = None
    utm_campaign: str = Field(default="admin_qr", max_length=MAX_TAG_LENGTH)

    @field_validator("label")
    @classmethod
    def _require_label(cls, value: str) -> str:
        return _strip_required(value, "label")

    @field_validator("expires_at")
    @classmethod
    def _expires_at_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class QRCodeToggleRequest(BaseModel):
    is_active: bool


class QRCodeResponse(BaseModel):
    id: int
    property_id: int
    token: str
    label: str
    is_active: bool
    created_at: datetime
    expires_at: Optional[datetime] = None


class QRCodeListResponse(BaseModel):
    items: List[QRCodeResponse]


class QRCodeCreateResponse(BaseModel):
    token_id: int
    token: str
    full_url: Optional[str] = None


class QRCodeRegenerateResponse(BaseModel):
    token_id: int
    full_url: str


# short links
class ShortLinkCreateRequest(BaseModel):
    campaign: str = Field(..., max_length=MAX_TAG_LENGTH)
    access_token_id: Optional[int] = Field(default=None, gt=0)
    unit: Optional[str] = Field(default=None, max_length=MAX_TAG_LENGTH)
    content: Optional[str] = Field(default=None, max_length=MAX_TAG_LENGTH)
    label: Optional[str] = Field(default=None, max_length=MAX_LABEL_LENGTH)

    @field_validator("campaign")
    @classmethod
    def _require_campaign(cls, value: str) -> str:
        return _strip_required(value, "campaign")

    @field_validator("unit", "content", "label")
    @classmethod
    def _normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return _strip_optional(value)


class ShortLinkResponse(BaseModel):
    id: int
    code: str
    property_id: int
    campaign: str
    access_token_id: Optional[int] = None
    unit: Optional[str] = None
    content: Optional[str] = None
    label: Optional[str] = None
    is_active: bool
    created_at: datetime


class ShortLinkListResponse(BaseModel):
    items: List[ShortLinkResponse]


class ShortLinkCreateResponse(BaseModel):
    id: int
    code: str
    short_url: str


# resident access
class ResidentAccessRequest(BaseModel):
    access_token: str = Field(..., max_length=256)
    property_hash: str = Field(..., max_length=64)

    @field_validator("access_token", "property_hash")
    @classmethod
    def _require_value(cls, value: str) -> str:
        return _strip_required(value, "access_token and property_hash")


class ResidentAccessResponse(BaseModel):
    session_token: str
    property_id: int
    expires_at: datetime


class ResidentAccessStatus(BaseModel):
    has_access: bool
    property_id: Optional[int] = None
    expires_at: Optional[datetime] = None


class ResidentSessionResponse(BaseModel):
    """Active resident session as shown to admins; the session token stays private."""

    id: int
    access_token_id: int
    created_at: datetime
    last_seen_at: Optional[datetime] = None
    expires_at: datetime


class ResidentSessionListResponse(BaseModel):
    items: List[ResidentSessionResponse]
