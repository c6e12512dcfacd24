"""
tests/test_api_routes.py -- Integration tests for the REST API.

These tests exercise the full stack: FastAPI routing -> auth dependency ->
AccountLifecycle / AssociationService -> access evaluator -> gateway ->
response model serialization -> error envelope. Unit tests of the services
live in test_lifecycle.py; here the point is the HTTP contract.

Coverage:
  - 401 on protected routes without a token or with a bad one
  - Alice scenario end to end: lookup code -> register -> pending login ->
    admin approves -> login -> /me
  - error envelope codes for duplicate, pending, forbidden, not found
  - member list filtering and cross-association isolation over HTTP
  - association routes for super_admin vs admin

Fixtures used (from conftest.py):
  - api_client: (client, portal) -- module-scoped; the portal is shared by
    every test in this module, so each test uses its own email addresses.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from auth.models import SessionClaims
from auth.tokens import issue_session_token
from conftest import ADMIN_PASSWORD, MEMBER_PASSWORD, Portal


def _bearer(claims: SessionClaims) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_session_token(claims)}"}


def _register(client: TestClient, portal: Portal, email: str, association_id: str | None = None) -> dict:
    resp = client.post(
        "/api/v1/auth/register",
        json={
            "name": email.split("@")[0].title(),
            "email": email,
            "password": MEMBER_PASSWORD,
            "association_id": association_id or portal.assoc_a.id,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestApiAuthFailure:
    """Unauthenticated requests to protected API routes must return 401."""

    def test_members_unauthenticated(self, api_client: tuple[TestClient, Portal]) -> None:
        client, _portal = api_client
        resp = client.get("/api/v1/members")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_me_with_garbage_token(self, api_client: tuple[TestClient, Portal]) -> None:
        client, _portal = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_associations_unauthenticated(self, api_client: tuple[TestClient, Portal]) -> None:
        client, _portal = api_client
        assert client.get("/api/v1/associations").status_code == 401


class TestAliceScenario:
    def test_register_approve_login(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client

        lookup = client.get("/api/v1/associations/by-code/alpha")
        assert lookup.status_code == 200
        association_id = lookup.json()["id"]
        assert association_id == portal.assoc_a.id

        reg = _register(client, portal, "alice.api@example.com", association_id)
        assert reg["member_code"].startswith("ALPHA")

        login_body = {"email": "alice.api@example.com", "password": MEMBER_PASSWORD, "association_id": association_id}
        pending = client.post("/api/v1/auth/login", json=login_body)
        assert pending.status_code == 403
        assert pending.json()["error"]["code"] == "pending_approval"
        assert pending.json()["error"]["detail"] == "pending"
        assert "access_token" not in pending.cookies

        approved = client.post(f"/api/v1/members/{reg['member_id']}/approve", headers=_bearer(portal.admin_a))
        assert approved.status_code == 200
        assert approved.json()["status"] == "active"

        login = client.post("/api/v1/auth/login", json=login_body)
        assert login.status_code == 200
        assert login.headers["Cache-Control"] == "no-store"
        data = login.json()
        assert data["role"] == "member"
        assert data["association_id"] == association_id

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.status_code == 200
        body = me.json()
        assert body["user"]["email"] == "alice.api@example.com"
        assert "password_hash" not in body["user"]
        assert body["member"]["member_code"] == reg["member_code"]
        assert body["association"]["code"] == "ALPHA"
        client.cookies.clear()

    def test_login_sets_cookie_usable_for_auth(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "admin-b@example.com", "password": ADMIN_PASSWORD, "association_id": portal.assoc_b.id},
        )
        assert resp.status_code == 200
        token = resp.cookies.get("access_token")
        assert token
        client.cookies.clear()
        client.cookies.set("access_token", token)
        me = client.get("/api/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["user"]["role"] == "admin"
        client.cookies.clear()

    def test_bad_credentials_envelope(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "nobody@example.com", "password": "whatever1", "association_id": portal.assoc_a.id},
        )
        assert resp.status_code == 401
        assert resp.json() == {
            "error": {"code": "bad_credentials", "message": "Invalid credentials.", "detail": None}
        }


class TestRegisterErrors:
    def test_duplicate_email_conflict(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        _register(client, portal, "dup.api@example.com")
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "name": "Dup",
                "email": "DUP.api@example.com",
                "password": MEMBER_PASSWORD,
                "association_id": portal.assoc_b.id,
            },
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_account"

    def test_weak_password(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "Weak", "email": "weak@example.com", "password": "123", "association_id": portal.assoc_a.id},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_missing_field_is_422(self, api_client: tuple[TestClient, Portal]) -> None:
        client, _portal = api_client
        resp = client.post("/api/v1/auth/register", json={"email": "x@example.com"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLongPasswords:
    def test_register_and_login_with_100_character_password(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        long_pw = "L" * 100
        reg = client.post(
            "/api/v1/auth/register",
            json={"name": "Long", "email": "long.api@example.com", "password": long_pw, "association_id": portal.assoc_a.id},
        )
        assert reg.status_code == 201, reg.text
        client.post(f"/api/v1/members/{reg.json()['member_id']}/approve", headers=_bearer(portal.admin_a))
        login = client.post(
            "/api/v1/auth/login",
            json={"email": "long.api@example.com", "password": long_pw, "association_id": portal.assoc_a.id},
        )
        assert login.status_code == 200
        client.cookies.clear()


class TestUnexpectedErrors:
    def test_member_code_exhaustion_is_opaque_500(self, api_client: tuple[TestClient, Portal], monkeypatch) -> None:
        client, portal = api_client

        def collide(conn, member):
            raise IntegrityError("INSERT INTO members", {}, Exception("UNIQUE constraint failed: members.member_code"))

        monkeypatch.setattr(portal.store, "insert_member", collide)
        resp = client.post(
            "/api/v1/auth/register",
            json={
                "name": "Unlucky",
                "email": "unlucky.api@example.com",
                "password": MEMBER_PASSWORD,
                "association_id": portal.assoc_a.id,
            },
        )
        assert resp.status_code == 500
        assert resp.json() == {
            "error": {"code": "internal_error", "message": "An unexpected error occurred.", "detail": None}
        }
        assert "UNIQUE" not in resp.text


class TestMemberRoutes:
    def test_cross_association_isolation(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        bob = _register(client, portal, "bob.api@example.com", portal.assoc_b.id)

        listing = client.get("/api/v1/members", headers=_bearer(portal.admin_a), params={"limit": 100})
        assert listing.status_code == 200
        assert "bob.api@example.com" not in [m["email"] for m in listing.json()["members"]]

        detail = client.get(f"/api/v1/members/{bob['member_id']}", headers=_bearer(portal.admin_a))
        assert detail.status_code == 403
        assert detail.json()["error"]["code"] == "forbidden"

        approve = client.post(f"/api/v1/members/{bob['member_id']}/approve", headers=_bearer(portal.admin_a))
        assert approve.status_code == 403

    def test_list_search_and_pagination_meta(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        _register(client, portal, "zed.searchable@example.com")
        resp = client.get("/api/v1/members", headers=_bearer(portal.admin_a), params={"search": "SEARCHABLE"})
        assert resp.status_code == 200
        data = resp.json()
        assert [m["email"] for m in data["members"]] == ["zed.searchable@example.com"]
        assert data["pagination"] == {"page": 1, "limit": 50, "total": 1, "pages": 1}

    def test_invalid_limit_is_400(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.get("/api/v1/members", headers=_bearer(portal.admin_a), params={"limit": 500})
        assert resp.status_code == 400

    def test_approve_twice_conflict(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        reg = _register(client, portal, "twice.api@example.com")
        url = f"/api/v1/members/{reg['member_id']}/approve"
        assert client.post(url, headers=_bearer(portal.admin_a)).status_code == 200
        again = client.post(url, headers=_bearer(portal.admin_a))
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "already_approved"

    def test_status_change_and_invalid_transition(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        reg = _register(client, portal, "status.api@example.com")
        url = f"/api/v1/members/{reg['member_id']}/status"
        bad = client.patch(url, json={"status": "suspended"}, headers=_bearer(portal.admin_a))
        assert bad.status_code == 409
        assert bad.json()["error"]["code"] == "invalid_transition"
        ok = client.patch(url, json={"status": "active"}, headers=_bearer(portal.admin_a))
        assert ok.status_code == 200
        assert ok.json()["status"] == "active"

    def test_member_not_found(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.get("/api/v1/members/does-not-exist", headers=_bearer(portal.admin_a))
        assert resp.status_code == 404

    def test_update_member_profile(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        reg = _register(client, portal, "update.api@example.com")
        resp = client.put(
            f"/api/v1/members/{reg['member_id']}",
            json={"membership_type": "student", "date_of_birth": "2001-02-03"},
            headers=_bearer(portal.admin_a),
        )
        assert resp.status_code == 200
        assert resp.json()["membership_type"] == "student"
        assert resp.json()["date_of_birth"] == "2001-02-03"

    def test_explicit_null_clears_phone(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        reg = _register(client, portal, "clear.api@example.com")
        url = f"/api/v1/members/{reg['member_id']}"
        client.put(url, json={"phone": "555-0100", "address": "1 Main St"}, headers=_bearer(portal.admin_a))
        resp = client.put(url, json={"phone": None}, headers=_bearer(portal.admin_a))
        assert resp.status_code == 200
        assert resp.json()["phone"] is None
        assert resp.json()["address"] == "1 Main St"

    def test_impossible_date_of_birth_is_400(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        reg = _register(client, portal, "baddate.api@example.com")
        resp = client.put(
            f"/api/v1/members/{reg['member_id']}",
            json={"date_of_birth": "2024-13-45"},
            headers=_bearer(portal.admin_a),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_stats_summary(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.get("/api/v1/members/stats/summary", headers=_bearer(portal.admin_b))
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {"total", "active", "pending", "inactive", "suspended"}
        assert data["total"] == sum(data[k] for k in ("active", "pending", "inactive", "suspended"))


class TestAssociationRoutes:
    def test_super_admin_creates_and_lists(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        created = client.post(
            "/api/v1/associations",
            json={"name": "Delta Dancers", "code": "delta"},
            headers=_bearer(portal.super_admin),
        )
        assert created.status_code == 201
        assert created.json()["code"] == "DELTA"

        listing = client.get("/api/v1/associations", headers=_bearer(portal.super_admin))
        assert "DELTA" in [a["code"] for a in listing.json()]

    def test_admin_cannot_create(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.post(
            "/api/v1/associations",
            json={"name": "Rogue", "code": "ROGUE"},
            headers=_bearer(portal.admin_a),
        )
        assert resp.status_code == 403

    def test_duplicate_code(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        resp = client.post(
            "/api/v1/associations",
            json={"name": "Alpha Again", "code": "ALPHA"},
            headers=_bearer(portal.super_admin),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_code"

    def test_admin_sees_only_own(self, api_client: tuple[TestClient, Portal]) -> None:
        client, portal = api_client
        listing = client.get("/api/v1/associations", headers=_bearer(portal.admin_a))
        assert [a["code"] for a in listing.json()] == ["ALPHA"]
        foreign = client.get(f"/api/v1/associations/{portal.assoc_b.id}", headers=_bearer(portal.admin_a))
        assert foreign.status_code == 403

    def test_unknown_code_lookup(self, api_client: tuple[TestClient, Portal]) -> None:
        client, _portal = api_client
        resp = client.get("/api/v1/associations/by-code/NOPE")
        assert resp.status_code == 404
