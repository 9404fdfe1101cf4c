"""Integration tests for the access-control HTTP surface.

Covers admin login/verify/logout, QR code and short link administration,
resident access exchange and the short link redirect.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl, urlsplit

import pytest
from fastapi.testclient import TestClient

from boardaccess import app as app_module
from boardaccess.service.runtime import get_runtime

SITE_URL = "https://board.example.com"


@pytest.fixture
def client():
    return TestClient(app_module.app)


@pytest.fixture
def properties():
    store = get_runtime().store
    return (
        store.create_property("maple-court", "Maple Court"),
        store.create_property("oak-house", "Oak House"),
    )


def _login(client, prop, secret):
    response = client.post(f"/v1/{prop.hash}/auth/login", json={"password": secret})
    assert response.status_code == 200
    return response.json()["data"]["token"]


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestAdminAuth:
    def test_property_login_binds_to_that_property(self, client, properties, admin_secret):
        """Admin S1 logs in on P1; S1 validates for P1 and not for P2."""
        p1, p2 = properties
        token = _login(client, p1, admin_secret)
        assert len(token) == 64

        ok = client.get(
            "/v1/auth/verify", params={"property_hash": p1.hash}, headers=_bearer(token)
        )
        assert ok.json()["data"] == {"valid": True}
        other = client.get(
            "/v1/auth/verify", params={"property_hash": p2.hash}, headers=_bearer(token)
        )
        assert other.json()["data"] == {"valid": False}

        denied = client.get(f"/v1/{p2.hash}/admin/qr-codes", headers=_bearer(token))
        assert denied.status_code == 401

    def test_wrong_password_is_unauthorized(self, client, properties):
        response = client.post(
            f"/v1/{properties[0].hash}/auth/login", json={"password": "nope"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_unknown_property_hash_is_not_found(self, client, admin_secret):
        response = client.post("/v1/zzzzzzzz/auth/login", json={"password": admin_secret})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_global_login_accepts_every_property(self, client, properties, admin_secret):
        response = client.post("/v1/auth/login", json={"password": admin_secret})
        token = response.json()["data"]["token"]
        for prop in properties:
            listing = client.get(f"/v1/{prop.hash}/admin/qr-codes", headers=_bearer(token))
            assert listing.status_code == 200

    def test_logout_revokes_and_is_idempotent(self, client, properties, admin_secret):
        p1, _ = properties
        token = _login(client, p1, admin_secret)
        assert client.post("/v1/auth/logout", headers=_bearer(token)).status_code == 200
        assert client.post("/v1/auth/logout", headers=_bearer(token)).status_code == 200
        assert client.post("/v1/auth/logout").status_code == 200

        verify = client.get("/v1/auth/verify", headers=_bearer(token))
        assert verify.json()["data"] == {"valid": False}

    def test_verify_without_token(self, client):
        response = client.get("/v1/auth/verify")
        assert response.status_code == 200
        assert response.json()["data"] == {"valid": False}


class TestQrCodes:
    def test_issue_list_and_toggle(self, client, properties, admin_secret):
        p1, _ = properties
        token = _login(client, p1, admin_secret)

        created = client.post(
            f"/v1/{p1.hash}/admin/qr-codes",
            json={"label": "Lobby sign"},
            headers=_bearer(token),
        )
        assert created.status_code == 201
        data = created.json()["data"]
        assert len(data["token"]) == 43
        assert data["full_url"].startswith(f"{SITE_URL}/{p1.hash}?auth={data['token']}")

        listing = client.get(f"/v1/{p1.hash}/admin/qr-codes", headers=_bearer(token))
        items = listing.json()["data"]["items"]
        assert [item["id"] for item in items] == [data["token_id"]]

        toggled = client.patch(
            f"/v1/{p1.hash}/admin/qr-codes/{data['token_id']}",
            json={"is_active": False},
            headers=_bearer(token),
        )
        assert toggled.status_code == 200
        assert get_runtime().access_tokens.get(data["token_id"]).is_active is False

    def test_toggle_token_of_other_property_is_not_found(self, client, properties, admin_secret):
        p1, p2 = properties
        foreign = get_runtime().access_tokens.issue(p2.id, "Oak lobby")
        token = _login(client, p1, admin_secret)
        response = client.patch(
            f"/v1/{p1.hash}/admin/qr-codes/{foreign.token_id}",
            json={"is_active": False},
            headers=_bearer(token),
        )
        assert response.status_code == 404
        assert get_runtime().access_tokens.get(foreign.token_id).is_active is True

    def test_missing_label_is_a_validation_error(self, client, properties, admin_secret):
        p1, _ = properties
        token = _login(client, p1, admin_secret)
        response = client.post(
            f"/v1/{p1.hash}/admin/qr-codes", json={"label": "  "}, headers=_bearer(token)
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_requires_bearer_token(self, client, properties):
        response = client.get(f"/v1/{properties[0].hash}/admin/qr-codes")
        assert response.status_code == 401

    def test_expiry_without_timezone_is_read_as_utc(self, client, properties, admin_secret):
        p1, _ = properties
        token = _login(client, p1, admin_secret)
        created = client.post(
            f"/v1/{p1.hash}/admin/qr-codes",
            json={"label": "Lobby sign", "expires_at": "2099-01-01T00:00:00"},
            headers=_bearer(token),
        )
        assert created.status_code == 201
        access_token = created.json()["data"]["token"]

        scan = client.post(
            "/v1/resident/access/validate",
            json={"access_token": access_token, "property_hash": p1.hash},
        )
        assert scan.status_code == 200
        assert scan.json()["data"]["property_id"] == p1.id

    def test_regenerate_reuses_existing_token(self, client, properties, admin_secret):
        p1, _ = properties
        issued = get_runtime().access_tokens.issue(p1.id, "Lobby sign")
        token = _login(client, p1, admin_secret)

        response = client.post(
            f"/v1/{p1.hash}/admin/qr-codes/{issued.token_id}/regenerate",
            params={"utm_campaign": "reprint"},
            headers=_bearer(token),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token_id"] == issued.token_id
        parts = urlsplit(data["full_url"])
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == f"{SITE_URL}/{p1.hash}"
        assert parse_qsl(parts.query) == [
            ("auth", issued.token),
            ("utm_source", "qr"),
            ("utm_medium", "print"),
            ("utm_campaign", "reprint"),
        ]
        assert [t.id for t in get_runtime().access_tokens.list_for_property(p1.id)] == [
            issued.token_id
        ]

    def test_regenerate_token_of_other_property_is_not_found(
        self, client, properties, admin_secret
    ):
        p1, p2 = properties
        foreign = get_runtime().access_tokens.issue(p2.id, "Oak lobby")
        token = _login(client, p1, admin_secret)
        response = client.post(
            f"/v1/{p1.hash}/admin/qr-codes/{foreign.token_id}/regenerate",
            headers=_bearer(token),
        )
        assert response.status_code == 404

    def test_regenerate_requires_session_for_that_property(self, client, properties, admin_secret):
        p1, p2 = properties
        issued = get_runtime().access_tokens.issue(p1.id, "Lobby sign")
        token = _login(client, p2, admin_secret)
        response = client.post(
            f"/v1/{p1.hash}/admin/qr-codes/{issued.token_id}/regenerate",
            headers=_bearer(token),
        )
        assert response.status_code == 401


class TestGlobalQrListing:
    def test_global_session_lists_every_property(self, client, properties, admin_secret):
        p1, p2 = properties
        a = get_runtime().access_tokens.issue(p1.id, "Maple lobby")
        b = get_runtime().access_tokens.issue(p2.id, "Oak lobby")
        login = client.post("/v1/auth/login", json={"password": admin_secret})
        token = login.json()["data"]["token"]

        everything = client.get("/v1/admin/qr-codes", headers=_bearer(token))
        assert everything.status_code == 200
        assert [i["id"] for i in everything.json()["data"]["items"]] == [a.token_id, b.token_id]

        filtered = client.get(
            "/v1/admin/qr-codes", params={"property_id": p2.id}, headers=_bearer(token)
        )
        assert [i["id"] for i in filtered.json()["data"]["items"]] == [b.token_id]

    def test_scoped_session_may_filter_to_its_own_property(self, client, properties, admin_secret):
        p1, p2 = properties
        a = get_runtime().access_tokens.issue(p1.id, "Maple lobby")
        get_runtime().access_tokens.issue(p2.id, "Oak lobby")
        token = _login(client, p1, admin_secret)

        own = client.get(
            "/v1/admin/qr-codes", params={"property_id": p1.id}, headers=_bearer(token)
        )
        assert own.status_code == 200
        assert [i["id"] for i in own.json()["data"]["items"]] == [a.token_id]

        other = client.get(
            "/v1/admin/qr-codes", params={"property_id": p2.id}, headers=_bearer(token)
        )
        assert other.status_code == 401

    def test_scoped_session_cannot_list_everything(self, client, properties, admin_secret):
        token = _login(client, properties[0], admin_secret)
        response = client.get("/v1/admin/qr-codes", headers=_bearer(token))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "forbidden"

    def test_requires_bearer_token(self, client, properties):
        response = client.get("/v1/admin/qr-codes")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"


class TestShortLinks:
    def test_create_list_and_deactivate(self, client, properties, admin_secret):
        p1, _ = properties
        token = _login(client, p1, admin_secret)
        created = client.post(
            f"/v1/{p1.hash}/admin/short-links",
            json={"campaign": "unit_card", "unit": "4A"},
            headers=_bearer(token),
        )
        assert created.status_code == 201
        data = created.json()["data"]
        assert data["short_url"] == f"{SITE_URL}/s/{data['code']}"

        listing = client.get(f"/v1/{p1.hash}/admin/short-links", headers=_bearer(token))
        assert listing.json()["data"]["items"][0]["unit"] == "4A"

        removed = client.delete(
            f"/v1/{p1.hash}/admin/short-links/{data['id']}", headers=_bearer(token)
        )
        assert removed.status_code == 200
        assert get_runtime().short_links.resolve(data["code"]) is None

    def test_cannot_attach_token_of_other_property(self, client, properties, admin_secret):
        p1, p2 = properties
        foreign = get_runtime().access_tokens.issue(p2.id, "Oak lobby")
        token = _login(client, p1, admin_secret)
        response = client.post(
            f"/v1/{p1.hash}/admin/short-links",
            json={"campaign": "lobby", "access_token_id": foreign.token_id},
            headers=_bearer(token),
        )
        assert response.status_code == 404


class TestRedirect:
    def test_redirect_carries_auth_and_utm(self, client, properties):
        p1, _ = properties
        runtime = get_runtime()
        issued = runtime.access_tokens.issue(p1.id, "Unit 4A")
        created = runtime.short_links.create(
            p1.id, "unit_card", access_token_id=issued.token_id, unit="4A"
        )

        response = client.get(f"/s/{created.code}", follow_redirects=False)
        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith(f"{SITE_URL}/{p1.hash}?")
        params = dict(parse_qsl(urlsplit(location).query))
        assert params["auth"] == issued.token
        assert params["utm_campaign"] == "unit_card"
        assert params["unit"] == "4A"

    def test_deactivated_token_drops_out_of_redirect(self, client, properties):
        p1, _ = properties
        runtime = get_runtime()
        issued = runtime.access_tokens.issue(p1.id, "Unit 4A")
        created = runtime.short_links.create(p1.id, "unit_card", access_token_id=issued.token_id)
        runtime.access_tokens.toggle(issued.token_id, False)

        response = client.get(f"/s/{created.code}", follow_redirects=False)
        assert response.status_code == 302
        assert "auth=" not in response.headers["location"]

    def test_unknown_and_inactive_codes_redirect_home(self, client, properties):
        runtime = get_runtime()
        created = runtime.short_links.create(properties[0].id, "lobby")
        runtime.short_links.deactivate(created.id)

        for code in (created.code, "unknown1"):
            response = client.get(f"/s/{code}", follow_redirects=False)
            assert response.status_code == 302
            assert response.headers["location"] == f"{SITE_URL}/"


class TestResidentAccess:
    def test_scan_status_logout(self, client, properties):
        p1, _ = properties
        issued = get_runtime().access_tokens.issue(p1.id, "Lobby sign")

        response = client.post(
            "/v1/resident/access/validate",
            json={"access_token": issued.token, "property_hash": p1.hash},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["property_id"] == p1.id
        expires_at = datetime.fromisoformat(data["expires_at"].replace("Z", "+00:00"))
        assert expires_at - datetime.now(timezone.utc) > timedelta(days=89)

        status = client.get("/v1/resident/access/status", headers=_bearer(data["session_token"]))
        assert status.json()["data"]["has_access"] is True
        assert status.json()["data"]["property_id"] == p1.id

        logout = client.delete("/v1/resident/access/logout", headers=_bearer(data["session_token"]))
        assert logout.status_code == 200

        after = client.get("/v1/resident/access/status", headers=_bearer(data["session_token"]))
        assert after.json()["data"] == {"has_access": False, "property_id": None, "expires_at": None}

    def test_token_from_other_property_is_rejected(self, client, properties):
        p1, p2 = properties
        issued = get_runtime().access_tokens.issue(p1.id, "Lobby sign")
        response = client.post(
            "/v1/resident/access/validate",
            json={"access_token": issued.token, "property_hash": p2.hash},
        )
        assert response.status_code == 401

    def test_unknown_property_hash_is_rejected_like_a_bad_token(self, client, properties):
        issued = get_runtime().access_tokens.issue(properties[0].id, "Lobby sign")
        response = client.post(
            "/v1/resident/access/validate",
            json={"access_token": issued.token, "property_hash": "zzzzzzzz"},
        )
        assert response.status_code == 401

    def test_logout_without_token_is_bad_request(self, client):
        response = client.delete("/v1/resident/access/logout")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"


class TestResidentSessionListing:
    def test_lists_active_sessions_without_their_tokens(self, client, properties, admin_secret):
        p1, p2 = properties
        runtime = get_runtime()
        issued = runtime.access_tokens.issue(p1.id, "Lobby sign")
        first = runtime.resident_sessions.scan(issued.token, p1.id)
        runtime.resident_sessions.scan(issued.token, p1.id)
        other = runtime.access_tokens.issue(p2.id, "Oak lobby")
        runtime.resident_sessions.scan(other.token, p2.id)
        token = _login(client, p1, admin_secret)

        response = client.get(f"/v1/{p1.hash}/admin/resident-sessions", headers=_bearer(token))
        assert response.status_code == 200
        items = response.json()["data"]["items"]
        assert len(items) == 2
        assert {item["access_token_id"] for item in items} == {issued.token_id}
        assert all("session_token" not in item for item in items)
        assert first.session_token not in response.text

    def test_invalidated_session_drops_out(self, client, properties, admin_secret):
        p1, _ = properties
        runtime = get_runtime()
        issued = runtime.access_tokens.issue(p1.id, "Lobby sign")
        created = runtime.resident_sessions.scan(issued.token, p1.id)
        runtime.resident_sessions.invalidate(created.session_token)
        token = _login(client, p1, admin_secret)

        response = client.get(f"/v1/{p1.hash}/admin/resident-sessions", headers=_bearer(token))
        assert response.json()["data"]["items"] == []

    def test_requires_session_for_that_property(self, client, properties, admin_secret):
        p1, p2 = properties
        token = _login(client, p2, admin_secret)
        response = client.get(f"/v1/{p1.hash}/admin/resident-sessions", headers=_bearer(token))
        assert response.status_code == 401
