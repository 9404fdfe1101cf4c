from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from boardaccess.logging import get_logger
from boardaccess.storage.common import (
    deserialize_admin_sessions,
    generate_property_hash,
    serialize_admin_sessions,
    ensure_aware,
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

_ADMIN_STATE_NAME = "default"


class PostgresStore:
    """Postgres-backed credential store."""

    def __init__(self, dsn: str, fs_root: str) -> None:
        self.dsn = dsn
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _verify_required_schema(self) -> None:
        """Ensure credential tables exist before serving requests."""

        required_tables = [
            "property",
            "access_token",
            "short_link",
            "resident_session",
            "admin_session_state",
        ]
        with self._connect() as conn:
            missing_tables = []
            for table in required_tables:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply sql/001_schema.sql first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    # properties
    def create_property(
        self,
        slug: str,
        name: str,
        *,
        contact_requires_auth: bool = False,
        hash: Optional[str] = None,
    ) -> Property:
        prop_hash = hash or generate_property_hash()
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO property (slug, hash, name, contact_requires_auth)
                    VALUES (%s, %s, %s, %s)
                    RETURNING *
                    """,
                    (slug, prop_hash, name, contact_requires_auth),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = "hash" if "hash" in str(exc) else "slug"
            raise UniqueConstraintViolation(
                f"property {field} already exists", {"field": field}
            )
        return self._property_from_row(row)

    def get_property(self, property_id: int) -> Optional[Property]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM property WHERE id = %s", (property_id,)
            ).fetchone()
        return self._property_from_row(row) if row else None

    def get_property_by_hash(self, prop_hash: str) -> Optional[Property]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM property WHERE hash = %s", (prop_hash,)
            ).fetchone()
        return self._property_from_row(row) if row else None

    def get_property_by_slug(self, slug: str) -> Optional[Property]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM property WHERE slug = %s", (slug,)
            ).fetchone()
        return self._property_from_row(row) if row else None

    def list_properties(self) -> List[Property]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM property ORDER BY id").fetchall()
        return [self._property_from_row(row) for row in rows]

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO access_token (property_id, token, label, is_active, expires_at)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (property_id, token, label, is_active, expires_at),
                ).fetchone()
        except errors.UniqueViolation:
            raise UniqueConstraintViolation(
                "access token already exists", {"field": "token"}
            )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "property does not exist", {"property_id": property_id}
            )
        return self._access_token_from_row(row)

    def get_access_token(self, token_id: int) -> Optional[AccessToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM access_token WHERE id = %s", (token_id,)
            ).fetchone()
        return self._access_token_from_row(row) if row else None

    def get_access_token_by_value(self, token: str) -> Optional[AccessToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM access_token WHERE token = %s", (token,)
            ).fetchone()
        return self._access_token_from_row(row) if row else None

    def set_access_token_active(self, token_id: int, is_active: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE access_token SET is_active = %s WHERE id = %s",
                (is_active, token_id),
            )

    def list_access_tokens(self, property_id: Optional[int] = None) -> List[AccessToken]:
        with self._connect() as conn:
            if property_id is None:
                rows = conn.execute("SELECT * FROM access_token ORDER BY id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM access_token WHERE property_id = %s ORDER BY id",
                    (property_id,),
                ).fetchall()
        return [self._access_token_from_row(row) for row in rows]

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO short_link (code, property_id, access_token_id, campaign, unit, content, label)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (code, property_id, access_token_id, campaign, unit, content, label),
                ).fetchone()
        except errors.UniqueViolation:
            raise UniqueConstraintViolation(
                "short link code already exists", {"field": "code"}
            )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "short link references a missing row",
                {"property_id": property_id, "access_token_id": access_token_id},
            )
        return self._short_link_from_row(row)

    def get_short_link(self, link_id: int) -> Optional[ShortLink]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM short_link WHERE id = %s", (link_id,)
            ).fetchone()
        return self._short_link_from_row(row) if row else None

    def get_short_link_by_code(
        self, code: str, *, active_only: bool = True
    ) -> Optional[ShortLink]:
        query = "SELECT * FROM short_link WHERE code = %s"
        if active_only:
            query += " AND is_active"
        with self._connect() as conn:
            row = conn.execute(query, (code,)).fetchone()
        return self._short_link_from_row(row) if row else None

    def deactivate_short_link(self, link_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE short_link SET is_active = FALSE WHERE id = %s", (link_id,)
            )

    def list_short_links(self, property_id: int) -> List[ShortLink]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM short_link WHERE property_id = %s ORDER BY id",
                (property_id,),
            ).fetchall()
        return [self._short_link_from_row(row) for row in rows]

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO resident_session (property_id, access_token_id, session_token, created_at, last_seen_at, expires_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        property_id,
                        access_token_id,
                        session_token,
                        created_at,
                        created_at,
                        expires_at,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise UniqueConstraintViolation(
                "resident session token already exists", {"field": "session_token"}
            )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "resident session references a missing row",
                {"property_id": property_id, "access_token_id": access_token_id},
            )
        return self._resident_session_from_row(row)

    def get_resident_session_by_token(self, session_token: str) -> Optional[ResidentSession]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM resident_session WHERE session_token = %s",
                (session_token,),
            ).fetchone()
        return self._resident_session_from_row(row) if row else None

    def touch_resident_session(self, session_id: int, last_seen_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE resident_session SET last_seen_at = %s WHERE id = %s",
                (last_seen_at, session_id),
            )

    def delete_resident_session(self, session_token: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM resident_session WHERE session_token = %s",
                (session_token,),
            )

    def delete_expired_resident_sessions(self, now: datetime) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM resident_session WHERE expires_at <= %s", (now,)
            )
            return cur.rowcount or 0

    def list_resident_sessions(self, property_id: int) -> List[ResidentSession]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM resident_session WHERE property_id = %s ORDER BY id",
                (property_id,),
            ).fetchall()
        return [self._resident_session_from_row(row) for row in rows]

    # admin sessions
    def load_admin_sessions(self) -> Optional[AdminSessionSnapshot]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT state FROM admin_session_state WHERE name = %s",
                (_ADMIN_STATE_NAME,),
            ).fetchone()
        if not row:
            return None
        state = row.get("state")
        try:
            if isinstance(state, str):
                state = json.loads(state)
            sessions, last_updated = deserialize_admin_sessions(state)
        except (TypeError, ValueError) as exc:
            self.logger.warning("admin_session_state_malformed", error=str(exc))
            return None
        return AdminSessionSnapshot(sessions=sessions, last_updated=last_updated)

    def save_admin_sessions(
        self, sessions: Dict[str, AdminSession], last_updated: Optional[datetime] = None
    ) -> None:
        payload = serialize_admin_sessions(sessions, last_updated or utcnow())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO admin_session_state (name, state, updated_at)
                VALUES (%s, %s, now())
                ON CONFLICT (name) DO UPDATE SET state = EXCLUDED.state, updated_at = EXCLUDED.updated_at
                """,
                (_ADMIN_STATE_NAME, json.dumps(payload)),
            )

    # row mapping
    def _property_from_row(self, row: dict) -> Property:
        return Property(
            id=int(row["id"]),
            slug=row["slug"],
            hash=row["hash"],
            name=row["name"],
            contact_requires_auth=bool(row.get("contact_requires_auth", False)),
            created_at=ensure_aware(row.get("created_at") or utcnow()),
        )

    def _access_token_from_row(self, row: dict) -> AccessToken:
        expires_at = row.get("expires_at")
        return AccessToken(
            id=int(row["id"]),
            property_id=int(row["property_id"]),
            token=row["token"],
            label=row.get("label") or "",
            is_active=bool(row.get("is_active", True)),
            created_at=ensure_aware(row.get("created_at") or utcnow()),
            expires_at=ensure_aware(expires_at) if expires_at else None,
        )

    def _short_link_from_row(self, row: dict) -> ShortLink:
        access_token_id = row.get("access_token_id")
        return ShortLink(
            id=int(row["id"]),
            code=row["code"],
            property_id=int(row["property_id"]),
            campaign=row["campaign"],
            access_token_id=int(access_token_id) if access_token_id is not None else None,
            unit=row.get("unit"),
            content=row.get("content"),
            label=row.get("label"),
            is_active=bool(row.get("is_active", True)),
            created_at=ensure_aware(row.get("created_at") or utcnow()),
        )

    def _resident_session_from_row(self, row: dict) -> ResidentSession:
        last_seen_at = row.get("last_seen_at")
        return ResidentSession(
            id=int(row["id"]),
            property_id=int(row["property_id"]),
            access_token_id=int(row["access_token_id"]),
            session_token=row["session_token"],
            created_at=ensure_aware(row.get("created_at") or utcnow()),
            expires_at=ensure_aware(row["expires_at"]),
            last_seen_at=ensure_aware(last_seen_at) if last_seen_at else None,
        )
