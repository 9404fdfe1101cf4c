from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Path, Query
from fastapi.responses import RedirectResponse

from boardaccess.api.schemas import (
    AdminLoginRequest,
    AdminLoginResponse,
    Envelope,
    QRCodeCreateRequest,
    QRCodeCreateResponse,
    QRCodeListResponse,
    QRCodeRegenerateResponse,
    QRCodeResponse,
    QRCodeToggleRequest,
    ResidentAccessRequest,
    ResidentAccessResponse,
    ResidentAccessStatus,
    ResidentSessionListResponse,
    ResidentSessionResponse,
    ShortLinkCreateRequest,
    ShortLinkCreateResponse,
    ShortLinkListResponse,
    ShortLinkResponse,
    VerifyResponse,
)
from boardaccess.logging import get_logger
from boardaccess.service.errors import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ServerError,
    ValidationError,
)
from boardaccess.service.qr_url import build_qr_code_url
from boardaccess.service.runtime import Runtime, get_runtime
from boardaccess.storage.models import AccessToken, Property, ResidentSession, ShortLink

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")
redirect_router = APIRouter()


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    if not header.lower().startswith("bearer "):
        return None
    token = header.split(" ", 1)[1].strip()
    return token or None


def _property_or_404(runtime: Runtime, property_hash: str) -> Property:
    prop = runtime.store.get_property_by_hash(property_hash)
    if not prop:
        raise _http_error("not_found", "property not found", status_code=404)
    return prop


def _require_admin(runtime: Runtime, authorization: Optional[str], prop: Property) -> str:
    token = _extract_bearer(authorization)
    if not runtime.admin_sessions.validate(token, prop.id):
        raise AuthenticationError("invalid admin session")
    return token  # type: ignore[return-value]


def _qr_code_response(record: AccessToken) -> QRCodeResponse:
    return QRCodeResponse(
        id=record.id,
        property_id=record.property_id,
        token=record.token,
        label=record.label,
        is_active=record.is_active,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )


def _resident_session_response(sess: ResidentSession) -> ResidentSessionResponse:
    return ResidentSessionResponse(
        id=sess.id,
        access_token_id=sess.access_token_id,
        created_at=sess.created_at,
        last_seen_at=sess.last_seen_at,
        expires_at=sess.expires_at,
    )


def _short_link_response(link: ShortLink) -> ShortLinkResponse:
    return ShortLinkResponse(
        id=link.id,
        code=link.code,
        property_id=link.property_id,
        campaign=link.campaign,
        access_token_id=link.access_token_id,
        unit=link.unit,
        content=link.content,
        label=link.label,
        is_active=link.is_active,
        created_at=link.created_at,
    )


# ============================================================================
# ADMIN AUTH
# ============================================================================


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: AdminLoginRequest):
    """Create a global admin session.

    Kept for clients that predate per-property login; the session it
    returns is accepted by every property.
    """
    runtime = get_runtime()
    token = runtime.admin_sessions.create_session(body.password)
    if not token:
        raise _http_error("unauthorized", "invalid credentials", status_code=401)
    return Envelope(status="ok", data=AdminLoginResponse(token=token))


@router.post("/{property_hash}/auth/login", response_model=Envelope, tags=["auth"])
async def property_login(
    body: AdminLoginRequest,
    property_hash: str = Path(..., max_length=64),
):
    """Create an admin session bound to one property."""
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    token = runtime.admin_sessions.create_session(body.password, prop.id)
    if not token:
        raise _http_error("unauthorized", "invalid credentials", status_code=401)
    return Envelope(
        status="ok", data=AdminLoginResponse(token=token, property_id=prop.id)
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(authorization: Optional[str] = Header(None)):
    runtime = get_runtime()
    runtime.admin_sessions.revoke(_extract_bearer(authorization))
    return Envelope(status="ok", data={"message": "session revoked"})


@router.get("/auth/verify", response_model=Envelope, tags=["auth"])
async def verify(
    authorization: Optional[str] = Header(None),
    property_hash: Optional[str] = Query(None, max_length=64),
):
    runtime = get_runtime()
    token = _extract_bearer(authorization)
    property_id = None
    if property_hash:
        prop = runtime.store.get_property_by_hash(property_hash)
        if not prop:
            return Envelope(status="ok", data=VerifyResponse(valid=False))
        property_id = prop.id
    valid = runtime.admin_sessions.validate(token, property_id)
    return Envelope(status="ok", data=VerifyResponse(valid=valid))


# ============================================================================
# ADMIN QR CODES
# ============================================================================


@router.get(
    "/{property_hash}/admin/qr-codes", response_model=Envelope, tags=["admin"]
)
async def list_qr_codes(
    property_hash: str = Path(..., max_length=64),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    items = [_qr_code_response(t) for t in runtime.access_tokens.list_for_property(prop.id)]
    return Envelope(status="ok", data=QRCodeListResponse(items=items))


@router.post(
    "/{property_hash}/admin/qr-codes",
    response_model=Envelope,
    status_code=201,
    tags=["admin"],
)
async def create_qr_code(
    body: QRCodeCreateRequest,
    property_hash: str = Path(..., max_length=64),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    issued = runtime.access_tokens.issue(prop.id, body.label, body.expires_at)
    full_url = None
    if runtime.settings.site_url:
        full_url = build_qr_code_url(
            runtime.settings.site_url,
            prop.hash,
            utm_campaign=body.utm_campaign,
            auth_token=issued.token,
        )
    return Envelope(
        status="ok",
        data=QRCodeCreateResponse(
            token_id=issued.token_id, token=issued.token, full_url=full_url
        ),
    )


@router.patch(
    "/{property_hash}/admin/qr-codes/{token_id}",
    response_model=Envelope,
    tags=["admin"],
)
async def toggle_qr_code(
    body: QRCodeToggleRequest,
    property_hash: str = Path(..., max_length=64),
    token_id: int = Path(..., gt=0),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    record = runtime.access_tokens.get(token_id)
    # Tokens of other properties are indistinguishable from missing ones
    if not record or record.property_id != prop.id:
        raise NotFoundError("QR code not found", detail={"id": token_id})
    runtime.access_tokens.toggle(token_id, body.is_active)
    return Envelope(status="ok", data={"id": token_id, "is_active": body.is_active})


@router.post(
    "/{property_hash}/admin/qr-codes/{token_id}/regenerate",
    response_model=Envelope,
    tags=["admin"],
)
async def regenerate_qr_code(
    property_hash: str = Path(..., max_length=64),
    token_id: int = Path(..., gt=0),
    utm_campaign: str = Query("admin_qr", max_length=100),
    authorization: Optional[str] = Header(None),
):
    """Rebuild the printed URL for an existing token without issuing a new one."""
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    record = runtime.access_tokens.get(token_id)
    if not record or record.property_id != prop.id:
        raise NotFoundError("QR code not found", detail={"id": token_id})
    if not runtime.settings.site_url:
        raise ServerError("SITE_URL is not configured")
    full_url = build_qr_code_url(
        runtime.settings.site_url,
        prop.hash,
        utm_campaign=utm_campaign,
        auth_token=record.token,
    )
    return Envelope(
        status="ok",
        data=QRCodeRegenerateResponse(token_id=record.id, full_url=full_url),
    )


@router.get("/admin/qr-codes", response_model=Envelope, tags=["admin"])
async def list_all_qr_codes(
    property_id: Optional[int] = Query(None, gt=0),
    authorization: Optional[str] = Header(None),
):
    """List QR codes across properties.

    Without ``property_id`` only a global session may list; a session bound
    to one property gets ``forbidden``. With it, any session valid for that
    property may list.
    """
    runtime = get_runtime()
    token = _extract_bearer(authorization)
    if not runtime.admin_sessions.validate(token, property_id):
        raise AuthenticationError("invalid admin session")
    if property_id is not None:
        records = runtime.access_tokens.list_for_property(property_id)
    else:
        bound = runtime.admin_sessions.get_bound_property(token)
        if bound is not None:
            raise ForbiddenError(
                "session is bound to a single property",
                detail={"property_id": bound},
            )
        records = runtime.access_tokens.list_all()
    items = [_qr_code_response(t) for t in records]
    return Envelope(status="ok", data=QRCodeListResponse(items=items))


# ============================================================================
# ADMIN SHORT LINKS
# ============================================================================


@router.get(
    "/{property_hash}/admin/short-links", response_model=Envelope, tags=["admin"]
)
async def list_short_links(
    property_hash: str = Path(..., max_length=64),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    items = [
        _short_link_response(link)
        for link in runtime.short_links.list_for_property(prop.id)
    ]
    return Envelope(status="ok", data=ShortLinkListResponse(items=items))


@router.post(
    "/{property_hash}/admin/short-links",
    response_model=Envelope,
    status_code=201,
    tags=["admin"],
)
async def create_short_link(
    body: ShortLinkCreateRequest,
    property_hash: str = Path(..., max_length=64),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    if body.access_token_id is not None:
        record = runtime.access_tokens.get(body.access_token_id)
        if not record or record.property_id != prop.id:
            raise NotFoundError("QR code not found", detail={"id": body.access_token_id})
    created = runtime.short_links.create(
        prop.id,
        body.campaign,
        access_token_id=body.access_token_id,
        unit=body.unit,
        content=body.content,
        label=body.label,
    )
    return Envelope(
        status="ok",
        data=ShortLinkCreateResponse(
            id=created.id, code=created.code, short_url=created.short_url
        ),
    )


@router.delete(
    "/{property_hash}/admin/short-links/{link_id}",
    response_model=Envelope,
    tags=["admin"],
)
async def deactivate_short_link(
    property_hash: str = Path(..., max_length=64),
    link_id: int = Path(..., gt=0),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    link = runtime.short_links.get(link_id)
    if not link or link.property_id != prop.id:
        raise NotFoundError("short link not found", detail={"id": link_id})
    runtime.short_links.deactivate(link_id)
    return Envelope(status="ok", data={"id": link_id, "is_active": False})


# ============================================================================
# ADMIN RESIDENT SESSIONS
# ============================================================================


@router.get(
    "/{property_hash}/admin/resident-sessions",
    response_model=Envelope,
    tags=["admin"],
)
async def list_resident_sessions(
    property_hash: str = Path(..., max_length=64),
    authorization: Optional[str] = Header(None),
):
    runtime = get_runtime()
    prop = _property_or_404(runtime, property_hash)
    _require_admin(runtime, authorization, prop)
    items = [
        _resident_session_response(sess)
        for sess in runtime.resident_sessions.list_active_for_property(prop.id)
    ]
    return Envelope(status="ok", data=ResidentSessionListResponse(items=items))


# ============================================================================
# RESIDENT ACCESS
# ============================================================================


@router.post("/resident/access/validate", response_model=Envelope, tags=["resident"])
async def validate_resident_access(body: ResidentAccessRequest):
    """Exchange a scanned access token for a resident session."""
    runtime = get_runtime()
    prop = runtime.store.get_property_by_hash(body.property_hash)
    created = (
        runtime.resident_sessions.scan(body.access_token, prop.id) if prop else None
    )
    if created is None:
        raise _http_error(
            "unauthorized", "invalid or expired access token", status_code=401
        )
    return Envelope(
        status="ok",
        data=ResidentAccessResponse(
            session_token=created.session_token,
            property_id=prop.id,
            expires_at=created.expires_at,
        ),
    )


@router.get("/resident/access/status", response_model=Envelope, tags=["resident"])
async def resident_access_status(authorization: Optional[str] = Header(None)):
    runtime = get_runtime()
    grant = runtime.resident_sessions.validate(_extract_bearer(authorization))
    if grant is None:
        return Envelope(status="ok", data=ResidentAccessStatus(has_access=False))
    return Envelope(
        status="ok",
        data=ResidentAccessStatus(
            has_access=True, property_id=grant.property_id, expires_at=grant.expires_at
        ),
    )


@router.delete("/resident/access/logout", response_model=Envelope, tags=["resident"])
async def resident_logout(authorization: Optional[str] = Header(None)):
    token = _extract_bearer(authorization)
    if not token:
        raise ValidationError("no session token provided")
    get_runtime().resident_sessions.invalidate(token)
    return Envelope(status="ok", data={"message": "session invalidated"})


# ============================================================================
# SHORT LINK REDIRECT
# ============================================================================


@redirect_router.get("/s/{code}", tags=["redirect"], include_in_schema=False)
async def follow_short_link(code: str):
    runtime = get_runtime()
    fallback = f"{runtime.settings.site_url or ''}/"
    link = runtime.short_links.resolve(code)
    if link is None:
        return RedirectResponse(fallback, status_code=302)
    if not runtime.settings.site_url:
        logger.error("short_link_redirect_site_url_missing", short_link_id=link.id)
        return RedirectResponse(fallback, status_code=302)
    target = runtime.short_links.build_redirect_url(
        link, base_url=runtime.settings.site_url
    )
    return RedirectResponse(target, status_code=302)
