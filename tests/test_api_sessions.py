"""
tests/test_api_sessions.py -- Integration tests for the session and admin routes.

These tests exercise the full stack: FastAPI routing -> bearer dependency ->
TokenHandler -> python-jose adapter -> BlacklistManager -> TokenStore.

Coverage:
  - 401 without a token, with the taxonomy code for rejected tokens
  - Bearer scheme matched case-insensitively
  - GET /sessions/me returns the normalized identity
  - POST /sessions/logout blacklists only the presented token
  - POST /sessions/logout-all revokes older tokens, newer logins still work
  - Unconfigured reason -> 422 invalid_reason, nothing written
  - Admin revoke / status: 403 for non-admins, actor recorded for admins
  - Storage faults: 503 on writes, 401 unknown on verification

Fixtures used (from conftest.py):
  - api_client: (client, handler) over a per-test shared-memory store
  - make_jwt:   HS256 token factory
"""

from __future__ import annotations

import time

from fastapi.testclient import TestClient

from auth.handler import TokenHandler
from auth.store import StoreResult


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestAuthentication:
    def test_missing_token_is_401(self, api_client: tuple[TestClient, TokenHandler]) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/sessions/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_non_bearer_scheme_is_401(self, api_client: tuple[TestClient, TokenHandler]) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/sessions/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert resp.status_code == 401

    def test_scheme_is_case_insensitive(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, _ = api_client
        token = make_jwt(sub="user-1")
        for scheme in ("bearer", "BEARER"):
            resp = client.get("/api/v1/sessions/me", headers={"Authorization": f"{scheme} {token}"})
            assert resp.status_code == 200
            assert resp.json()["auth_identifier"] == "user-1"


    def test_expired_token_reports_code(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, _ = api_client
        now = int(time.time())
        resp = client.get("/api/v1/sessions/me", headers=_auth(make_jwt(iat=now - 7200, exp=now - 3600)))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "expired"
        assert "invalid_token" in resp.headers["WWW-Authenticate"]

    def test_whoami(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, _ = api_client
        token = make_jwt(sub="user-1", email="a@example.com", app_user_id="42")
        resp = client.get("/api/v1/sessions/me", headers=_auth(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["auth_identifier"] == "user-1"
        assert data["application_user_id"] == "42"
        assert data["email"] == "a@example.com"
        assert data["custom_claims"]["role"] == "user"

    def test_raw_token_never_echoed_in_errors(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, _ = api_client
        token = make_jwt(secret="wrong-secret-wrong-secret-wrong-secret-00")
        resp = client.get("/api/v1/sessions/me", headers=_auth(token))
        assert resp.json()["error"]["code"] == "invalid_signature"
        assert token not in resp.text


class TestLogout:
    def test_logout_blacklists_only_presented_token(
        self, api_client: tuple[TestClient, TokenHandler], make_jwt
    ) -> None:
        client, _ = api_client
        device_a = make_jwt(sub="user-1", jti="a")
        device_b = make_jwt(sub="user-1", jti="b")

        resp = client.post("/api/v1/sessions/logout", headers=_auth(device_a))
        assert resp.status_code == 201
        assert resp.json()["reason"] == "LOGOUT"

        rejected = client.get("/api/v1/sessions/me", headers=_auth(device_a))
        assert rejected.status_code == 401
        assert rejected.json()["error"]["code"] == "blacklisted"
        assert client.get("/api/v1/sessions/me", headers=_auth(device_b)).status_code == 200

    def test_logout_with_unconfigured_reason_is_422(
        self, api_client: tuple[TestClient, TokenHandler], make_jwt
    ) -> None:
        client, _ = api_client
        token = make_jwt(sub="user-1")
        resp = client.post("/api/v1/sessions/logout", headers=_auth(token), json={"reason": "because"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "invalid_reason"
        assert client.get("/api/v1/sessions/me", headers=_auth(token)).status_code == 200

    def test_logout_all_revokes_older_tokens(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, _ = api_client
        old = make_jwt(sub="user-1", iat=int(time.time()) - 60)

        resp = client.post("/api/v1/sessions/logout-all", headers=_auth(old), json={"reason": "user_logout"})
        assert resp.status_code == 201
        body = resp.json()
        assert body["owner_auth_identifier"] == "user-1"
        assert body["provider_revoked"] is False

        assert client.get("/api/v1/sessions/me", headers=_auth(old)).status_code == 401
        fresh = make_jwt(sub="user-1", iat=int(time.time()) + 1)
        assert client.get("/api/v1/sessions/me", headers=_auth(fresh)).status_code == 200

    def test_write_failure_is_503(self, api_client: tuple[TestClient, TokenHandler], make_jwt, monkeypatch) -> None:
        client, _ = api_client
        store = client.app.state.token_store
        monkeypatch.setattr(store, "add_user_revocation", lambda revocation: StoreResult.failure("down"))

        resp = client.post("/api/v1/sessions/logout-all", headers=_auth(make_jwt(sub="user-1")))

        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "storage_unavailable"

    def test_read_failure_rejects_token(self, api_client: tuple[TestClient, TokenHandler], make_jwt, monkeypatch) -> None:
        client, _ = api_client
        store = client.app.state.token_store
        monkeypatch.setattr(store, "is_token_blacklisted", lambda identifier: StoreResult.failure("down"))

        resp = client.get("/api/v1/sessions/me", headers=_auth(make_jwt(sub="user-1")))

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unknown"


class TestAdminRoutes:
    def test_non_admin_is_403(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/admin/users/user-2/revoke",
            headers=_auth(make_jwt(sub="user-1")),
            json={"reason": "user_deleted"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_revoke_and_status(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, handler = api_client
        admin = make_jwt(sub="admin-1", role="admin", app_user_id="7")
        victim = make_jwt(sub="user-2", iat=int(time.time()) - 60)

        before = client.get("/api/v1/admin/users/user-2/revocation", headers=_auth(admin))
        assert before.json()["revoked"] is False

        resp = client.post("/api/v1/admin/users/user-2/revoke", headers=_auth(admin), json={"reason": "user_deleted"})
        assert resp.status_code == 201

        status = client.get("/api/v1/admin/users/user-2/revocation", headers=_auth(admin)).json()
        assert status["revoked"] is True
        assert client.get("/api/v1/sessions/me", headers=_auth(victim)).status_code == 401

        store = client.app.state.token_store
        record = store.get_user_revocation("user-2").value
        assert record.revoked_by_user_id == "7"
        assert record.reason == "user_deleted"

    def test_admin_revoke_requires_reason_body(self, api_client: tuple[TestClient, TokenHandler], make_jwt) -> None:
        client, _ = api_client
        admin = make_jwt(sub="admin-1", role="admin")
        resp = client.post("/api/v1/admin/users/user-2/revoke", headers=_auth(admin))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
