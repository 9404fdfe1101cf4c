"""Common storage utilities shared between memory and postgres implementations."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from boardaccess.storage.models import (
    GLOBAL_BINDING,
    AdminSession,
    ScopedBinding,
    binding_for,
)

PROPERTY_HASH_LENGTH = 8


def generate_property_hash() -> str:
    """Return an unguessable 8-character URL-safe property hash."""
    return secrets.token_urlsafe(6)[:PROPERTY_HASH_LENGTH]


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes read back from storage as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_aware(value).isoformat()


def deserialize_datetime(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return ensure_aware(raw)
    if isinstance(raw, (int, float)):
        # Epoch milliseconds, as written by older session files
        return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
    return ensure_aware(datetime.fromisoformat(str(raw)))


# ============================================================================
# ADMIN SESSION STATE
# ============================================================================

def serialize_admin_sessions(
    sessions: Dict[str, AdminSession], last_updated: datetime
) -> dict:
    return {
        "sessions": {
            token: {
                "property_id": (
                    sess.binding.property_id
                    if isinstance(sess.binding, ScopedBinding)
                    else None
                ),
                "created_at": serialize_datetime(sess.created_at),
            }
            for token, sess in sessions.items()
        },
        "last_updated": serialize_datetime(last_updated),
    }


def deserialize_admin_sessions(
    data: dict,
) -> tuple[Dict[str, AdminSession], datetime]:
    """Parse persisted admin session state.

    Accepts the pre multi-tenant layout ``{"tokens": [...]}``, whose
    entries carry no property and therefore load with a global binding.

    Raises:
        ValueError: If the payload is not a recognizable session state
    """
    if not isinstance(data, dict):
        raise ValueError("admin session state must be an object")
    raw_updated = data.get("last_updated", data.get("lastUpdated"))
    if raw_updated is None:
        raise ValueError("admin session state has no last_updated stamp")
    last_updated = deserialize_datetime(raw_updated)

    sessions: Dict[str, AdminSession] = {}
    raw_sessions = data.get("sessions")
    if isinstance(raw_sessions, dict):
        for token, entry in raw_sessions.items():
            entry = entry or {}
            if not isinstance(entry, dict):
                raise ValueError(
                    f"admin session entry must be an object, got {type(entry).__name__}"
                )
            property_id = entry.get("property_id", entry.get("propertyId"))
            created_raw = entry.get("created_at", entry.get("createdAt"))
            sessions[token] = AdminSession(
                token=token,
                binding=binding_for(property_id),
                created_at=deserialize_datetime(created_raw) or last_updated,
            )
    for token in data.get("tokens") or []:
        if isinstance(token, str) and token not in sessions:
            sessions[token] = AdminSession(
                token=token, binding=GLOBAL_BINDING, created_at=last_updated
            )
    return sessions, last_updated


__all__ = [
    "PROPERTY_HASH_LENGTH",
    "generate_property_hash",
    "ensure_aware",
    "serialize_datetime",
    "deserialize_datetime",
    "serialize_admin_sessions",
    "deserialize_admin_sessions",
]
