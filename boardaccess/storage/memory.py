from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from boardaccess.logging import get_logger
from boardaccess.storage.common import (
    deserialize_admin_sessions,
    deserialize_datetime,
    generate_property_hash,
    serialize_admin_sessions,
    serialize_datetime,
)
from boardaccess.storage.errors import ConstraintViolation, UniqueConstraintViolation
from boardaccess.storage.models import (
    AccessToken,
    AdminSession,
    AdminSessionSnapshot,
    Property,
    ResidentSession,
    ShortLink,
    utcnow,
)


class MemoryStore:
    """In-process credential store persisted to JSON files under ``fs_root``."""

    def __init__(self, fs_root: str = "/tmp/boardaccess") -> None:
        self.logger = get_logger(__name__)
        self.properties: Dict[int, Property] = {}
        self.access_tokens: Dict[int, AccessToken] = {}
        self.short_links: Dict[int, ShortLink] = {}
        self.resident_sessions: Dict[int, ResidentSession] = {}
        self._seq: Dict[str, int] = {
            "property": 1,
            "access_token": 1,
            "short_link": 1,
            "resident_session": 1,
        }
        # Guards the id sequences
        self._seq_lock = threading.Lock()
        # RLock so persistence helpers can run inside data operations
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_dir(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir

    def _state_path(self) -> Path:
        return self._state_dir() / "memory_store.json"

    def _admin_sessions_path(self) -> Path:
        return self._state_dir() / "admin_sessions.json"

    def _next_id(self, kind: str) -> int:
        with self._seq_lock:
            value = self._seq[kind]
            self._seq[kind] = value + 1
            return value

    # properties
    def create_property(
        self,
        slug: str,
        name: str,
        *,
        contact_requires_auth: bool = False,
        hash: Optional[str] = None,
    ) -> Property:
        with self._data_lock:
            if any(p.slug == slug for p in self.properties.values()):
                raise UniqueConstraintViolation(
                    "property slug already exists", {"field": "slug"}
                )
            prop_hash = hash or generate_property_hash()
            if any(p.hash == prop_hash for p in self.properties.values()):
                raise UniqueConstraintViolation(
                    "property hash already exists", {"field": "hash"}
                )
            prop = Property(
                id=self._next_id("property"),
                slug=slug,
                hash=prop_hash,
                name=name,
                contact_requires_auth=contact_requires_auth,
            )
            self.properties[prop.id] = prop
            self._persist_state()
            return prop

    def get_property(self, property_id: int) -> Optional[Property]:
        with self._data_lock:
            return self.properties.get(property_id)

    def get_property_by_hash(self, prop_hash: str) -> Optional[Property]:
        with self._data_lock:
            return next(
                (p for p in self.properties.values() if p.hash == prop_hash), None
            )

    def get_property_by_slug(self, slug: str) -> Optional[Property]:
        with self._data_lock:
            return next((p for p in self.properties.values() if p.slug == slug), None)

    def list_properties(self) -> List[Property]:
        with self._data_lock:
            return sorted(self.properties.values(), key=lambda p: p.id)

    # access tokens
    def create_access_token(
        self,
        property_id: int,
        token: str,
        label: str,
        *,
        expires_at: Optional[datetime] = None,
        is_active: bool = True,
    ) -> AccessToken:
        with self._data_lock:
            if property_id not in self.properties:
                raise ConstraintViolation(
                    "property does not exist", {"property_id": property_id}
                )
            if any(t.token == token for t in self.access_tokens.values()):
                raise UniqueConstraintViolation(
                    "access token already exists", {"field": "token"}
                )
            record = AccessToken(
                id=self._next_id("access_token"),
                property_id=property_id,
                token=token,
                label=label,
                is_active=is_active,
                expires_at=expires_at,
            )
            self.access_tokens[record.id] = record
            self._persist_state()
            return record

    def get_access_token(self, token_id: int) -> Optional[AccessToken]:
        with self._data_lock:
            return self.access_tokens.get(token_id)

    def get_access_token_by_value(self, token: str) -> Optional[AccessToken]:
        with self._data_lock:
            return next(
                (t for t in self.access_tokens.values() if t.token == token), None
            )

    def set_access_token_active(self, token_id: int, is_active: bool) -> None:
        with self._data_lock:
            record = self.access_tokens.get(token_id)
            if not record:
                return
            record.is_active = is_active
            self._persist_state()

    def list_access_tokens(self, property_id: Optional[int] = None) -> List[AccessToken]:
        with self._data_lock:
            results = [
                t
                for t in self.access_tokens.values()
                if property_id is None or t.property_id == property_id
            ]
            return sorted(results, key=lambda t: t.id)

    # short links
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
    ) -> ShortLink:
        with self._data_lock:
            if property_id not in self.properties:
                raise ConstraintViolation(
                    "property does not exist", {"property_id": property_id}
                )
            if access_token_id is not None and access_token_id not in self.access_tokens:
                raise ConstraintViolation(
                    "access token does not exist", {"access_token_id": access_token_id}
                )
            if any(link.code == code for link in self.short_links.values()):
                raise UniqueConstraintViolation(
                    "short link code already exists", {"field": "code"}
                )
            link = ShortLink(
                id=self._next_id("short_link"),
                code=code,
                property_id=property_id,
                campaign=campaign,
                access_token_id=access_token_id,
                unit=unit,
                content=content,
                label=label,
            )
            self.short_links[link.id] = link
            self._persist_state()
            return link

    def get_short_link(self, link_id: int) -> Optional[ShortLink]:
        with self._data_lock:
            return self.short_links.get(link_id)

    def get_short_link_by_code(
        self, code: str, *, active_only: bool = True
    ) -> Optional[ShortLink]:
        with self._data_lock:
            for link in self.short_links.values():
                if link.code == code and (link.is_active or not active_only):
                    return link
            return None

    def deactivate_short_link(self, link_id: int) -> None:
        with self._data_lock:
            link = self.short_links.get(link_id)
            if not link or not link.is_active:
                return
            link.is_active = False
            self._persist_state()

    def list_short_links(self, property_id: int) -> List[ShortLink]:
        with self._data_lock:
            results = [
                link for link in self.short_links.values() if link.property_id == property_id
            ]
            return sorted(results, key=lambda link: link.id)

    # resident sessions
    def create_resident_session(
        self,
        property_id: int,
        access_token_id: int,
        session_token: str,
        *,
        created_at: datetime,
        expires_at: datetime,
    ) -> ResidentSession:
        with self._data_lock:
            if property_id not in self.properties:
                raise ConstraintViolation(
                    "property does not exist", {"property_id": property_id}
                )
            if any(
                s.session_token == session_token for s in self.resident_sessions.values()
            ):
                raise UniqueConstraintViolation(
                    "resident session token already exists", {"field": "session_token"}
                )
            sess = ResidentSession(
                id=self._next_id("resident_session"),
                property_id=property_id,
                access_token_id=access_token_id,
                session_token=session_token,
                created_at=created_at,
                expires_at=expires_at,
                last_seen_at=created_at,
            )
            self.resident_sessions[sess.id] = sess
            self._persist_state()
            return sess

    def get_resident_session_by_token(self, session_token: str) -> Optional[ResidentSession]:
        with self._data_lock:
            return next(
                (
                    s
                    for s in self.resident_sessions.values()
                    if s.session_token == session_token
                ),
                None,
            )

    def touch_resident_session(self, session_id: int, last_seen_at: datetime) -> None:
        with self._data_lock:
            sess = self.resident_sessions.get(session_id)
            if not sess:
                return
            sess.last_seen_at = last_seen_at
            self._persist_state()

    def delete_resident_session(self, session_token: str) -> None:
        with self._data_lock:
            stale = [
                sid
                for sid, sess in self.resident_sessions.items()
                if sess.session_token == session_token
            ]
            for sid in stale:
                self.resident_sessions.pop(sid, None)
            if stale:
                self._persist_state()

    def delete_expired_resident_sessions(self, now: datetime) -> int:
        with self._data_lock:
            stale = [
                sid
                for sid, sess in self.resident_sessions.items()
                if sess.expires_at <= now
            ]
            for sid in stale:
                self.resident_sessions.pop(sid, None)
            if stale:
                self._persist_state()
            return len(stale)

    def list_resident_sessions(self, property_id: int) -> List[ResidentSession]:
        with self._data_lock:
            results = [
                s for s in self.resident_sessions.values() if s.property_id == property_id
            ]
            return sorted(results, key=lambda s: s.id)

    # admin sessions
    def load_admin_sessions(self) -> Optional[AdminSessionSnapshot]:
        path = self._admin_sessions_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            self.logger.warning(
                "admin_session_state_unreadable", path=str(path), error=str(exc)
            )
            return None
        try:
            sessions, last_updated = deserialize_admin_sessions(data)
        except (TypeError, ValueError) as exc:
            self.logger.warning(
                "admin_session_state_malformed", path=str(path), error=str(exc)
            )
            return None
        return AdminSessionSnapshot(sessions=sessions, last_updated=last_updated)

    def save_admin_sessions(
        self, sessions: Dict[str, AdminSession], last_updated: Optional[datetime] = None
    ) -> None:
        payload = serialize_admin_sessions(sessions, last_updated or utcnow())
        path = self._admin_sessions_path()
        try:
            path.write_text(json.dumps(payload, indent=2))
        except Exception as exc:
            raise RuntimeError(f"failed to persist admin sessions: {exc}")

    # persistence
    def _persist_state(self) -> None:
        state = {
            "properties": [self._serialize_property(p) for p in self.properties.values()],
            "access_tokens": [
                self._serialize_access_token(t) for t in self.access_tokens.values()
            ],
            "short_links": [
                self._serialize_short_link(link) for link in self.short_links.values()
            ],
            "resident_sessions": [
                self._serialize_resident_session(s)
                for s in self.resident_sessions.values()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except Exception as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}")

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.properties = {
            p["id"]: self._deserialize_property(p) for p in data.get("properties", [])
        }
        self.access_tokens = {
            t["id"]: self._deserialize_access_token(t)
            for t in data.get("access_tokens", [])
        }
        self.short_links = {
            link["id"]: self._deserialize_short_link(link)
            for link in data.get("short_links", [])
        }
        self.resident_sessions = {
            s["id"]: self._deserialize_resident_session(s)
            for s in data.get("resident_sessions", [])
        }
        for kind, table in (
            ("property", self.properties),
            ("access_token", self.access_tokens),
            ("short_link", self.short_links),
            ("resident_session", self.resident_sessions),
        ):
            self._seq[kind] = max(table.keys(), default=0) + 1
        return True

    def _serialize_property(self, prop: Property) -> dict:
        return {
            "id": prop.id,
            "slug": prop.slug,
            "hash": prop.hash,
            "name": prop.name,
            "contact_requires_auth": prop.contact_requires_auth,
            "created_at": serialize_datetime(prop.created_at),
        }

    def _deserialize_property(self, data: dict) -> Property:
        return Property(
            id=int(data["id"]),
            slug=data["slug"],
            hash=data["hash"],
            name=data["name"],
            contact_requires_auth=data.get("contact_requires_auth", False),
            created_at=deserialize_datetime(data["created_at"]),
        )

    def _serialize_access_token(self, record: AccessToken) -> dict:
        return {
            "id": record.id,
            "property_id": record.property_id,
            "token": record.token,
            "label": record.label,
            "is_active": record.is_active,
            "created_at": serialize_datetime(record.created_at),
            "expires_at": serialize_datetime(record.expires_at),
        }

    def _deserialize_access_token(self, data: dict) -> AccessToken:
        return AccessToken(
            id=int(data["id"]),
            property_id=int(data["property_id"]),
            token=data["token"],
            label=data.get("label", ""),
            is_active=data.get("is_active", True),
            created_at=deserialize_datetime(data["created_at"]),
            expires_at=deserialize_datetime(data.get("expires_at")),
        )

    def _serialize_short_link(self, link: ShortLink) -> dict:
        return {
            "id": link.id,
            "code": link.code,
            "property_id": link.property_id,
            "campaign": link.campaign,
            "access_token_id": link.access_token_id,
            "unit": link.unit,
            "content": link.content,
            "label": link.label,
            "is_active": link.is_active,
            "created_at": serialize_datetime(link.created_at),
        }

    def _deserialize_short_link(self, data: dict) -> ShortLink:
        return ShortLink(
            id=int(data["id"]),
            code=data["code"],
            property_id=int(data["property_id"]),
            campaign=data["campaign"],
            access_token_id=data.get("access_token_id"),
            unit=data.get("unit"),
            content=data.get("content"),
            label=data.get("label"),
            is_active=data.get("is_active", True),
            created_at=deserialize_datetime(data["created_at"]),
        )

    def _serialize_resident_session(self, sess: ResidentSession) -> dict:
        return {
            "id": sess.id,
            "property_id": sess.property_id,
            "access_token_id": sess.access_token_id,
            "session_token": sess.session_token,
            "created_at": serialize_datetime(sess.created_at),
            "expires_at": serialize_datetime(sess.expires_at),
            "last_seen_at": serialize_datetime(sess.last_seen_at),
        }

    def _deserialize_resident_session(self, data: dict) -> ResidentSession:
        return ResidentSession(
            id=int(data["id"]),
            property_id=int(data["property_id"]),
            access_token_id=int(data["access_token_id"]),
            session_token=data["session_token"],
            created_at=deserialize_datetime(data["created_at"]),
            expires_at=deserialize_datetime(data["expires_at"]),
            last_seen_at=deserialize_datetime(data.get("last_seen_at")),
        )
