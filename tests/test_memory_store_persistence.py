import json
from datetime import timedelta

import pytest

from boardaccess.storage.errors import ConstraintViolation, UniqueConstraintViolation
from boardaccess.storage.memory import MemoryStore
from boardaccess.storage.models import AdminSession, ScopedBinding, utcnow


def test_memory_store_persists_credentials(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    prop = store.create_property("maple-court", "Maple Court", contact_requires_auth=True)
    expires = utcnow() + timedelta(days=3)
    token = store.create_access_token(prop.id, "tok-value", "Lobby", expires_at=expires)
    link = store.create_short_link(
        "Code1234", prop.id, "unit_card", access_token_id=token.id, unit="4A"
    )
    now = utcnow()
    sess = store.create_resident_session(
        prop.id, token.id, "sess-value", created_at=now, expires_at=now + timedelta(days=90)
    )
    store.set_access_token_active(token.id, False)

    reloaded = MemoryStore(fs_root=str(tmp_path))

    assert reloaded.get_property_by_hash(prop.hash).contact_requires_auth is True
    reloaded_token = reloaded.get_access_token_by_value("tok-value")
    assert reloaded_token.is_active is False
    assert reloaded_token.expires_at == expires
    reloaded_link = reloaded.get_short_link_by_code("Code1234")
    assert reloaded_link.unit == "4A"
    assert reloaded_link.access_token_id == token.id
    reloaded_sess = reloaded.get_resident_session_by_token("sess-value")
    assert reloaded_sess.id == sess.id
    assert reloaded_sess.last_seen_at == now


def test_ids_continue_after_reload(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    first = store.create_property("a", "A")
    reloaded = MemoryStore(fs_root=str(tmp_path))
    second = reloaded.create_property("b", "B")
    assert second.id == first.id + 1


def test_property_slug_is_unique(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    store.create_property("maple-court", "Maple Court")
    with pytest.raises(UniqueConstraintViolation) as excinfo:
        store.create_property("maple-court", "Duplicate")
    assert excinfo.value.detail == {"field": "slug"}


def test_property_hash_is_unique(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    store.create_property("a", "A", hash="fixedhsh")
    with pytest.raises(UniqueConstraintViolation):
        store.create_property("b", "B", hash="fixedhsh")


def test_generated_property_hash_is_8_chars(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    prop = store.create_property("a", "A")
    assert len(prop.hash) == 8
    assert store.get_property_by_slug("a").id == prop.id
    assert store.list_properties() == [prop]


def test_duplicate_short_code_is_a_unique_violation(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    prop = store.create_property("a", "A")
    store.create_short_link("Code1234", prop.id, "lobby")
    with pytest.raises(UniqueConstraintViolation) as excinfo:
        store.create_short_link("Code1234", prop.id, "lobby")
    assert excinfo.value.detail == {"field": "code"}


def test_dangling_references_are_plain_constraint_violations(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    prop = store.create_property("a", "A")
    with pytest.raises(ConstraintViolation) as excinfo:
        store.create_short_link("Code1234", prop.id, "lobby", access_token_id=77)
    assert not isinstance(excinfo.value, UniqueConstraintViolation)
    with pytest.raises(ConstraintViolation):
        store.create_access_token(99, "tok", "label")


def test_inactive_short_link_lookup(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    prop = store.create_property("a", "A")
    link = store.create_short_link("Code1234", prop.id, "lobby")
    store.deactivate_short_link(link.id)
    assert store.get_short_link_by_code("Code1234") is None
    assert store.get_short_link_by_code("Code1234", active_only=False).id == link.id


def test_admin_sessions_written_to_their_own_file(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    now = utcnow()
    sessions = {"t" * 64: AdminSession(token="t" * 64, binding=ScopedBinding(3), created_at=now)}
    store.save_admin_sessions(sessions, now)

    raw = json.loads((tmp_path / "state" / "admin_sessions.json").read_text())
    assert raw["sessions"]["t" * 64]["property_id"] == 3
    assert "last_updated" in raw

    snapshot = MemoryStore(fs_root=str(tmp_path)).load_admin_sessions()
    assert snapshot.last_updated == now
    assert snapshot.sessions["t" * 64].binding == ScopedBinding(3)


def test_missing_admin_session_file_loads_none(tmp_path):
    assert MemoryStore(fs_root=str(tmp_path)).load_admin_sessions() is None


def test_admin_session_file_without_stamp_loads_none(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path))
    path = tmp_path / "state" / "admin_sessions.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"sessions": {}}))
    assert store.load_admin_sessions() is None
