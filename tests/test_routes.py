import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError

from app.core.dependencies import get_http_client, get_storage, get_supabase
from app.middleware.rate_limit import limiter
from app.services.sync.oauth import decode_state, encode_state
from main import app

SETTINGS_PAGE = "https://portal.test/dashboard/settings/file-storage"


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def provider_api(request):
    """Google token + userinfo + Drive endpoints for route-level flows."""
    url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
    if url == "https://oauth2.googleapis.com/token":
        form = parse_qs(request.content.decode())
        if form.get("code") == ["bad-code"]:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={
            "access_token": "at-new", "refresh_token": "rt-new", "expires_in": 3600,
            "scope": "https://www.googleapis.com/auth/drive.readonly openid",
        })
    if url == "https://www.googleapis.com/oauth2/v2/userinfo":
        return httpx.Response(200, json={"id": "g-123", "email": "owner@example.com"})
    if request.headers.get("Authorization") == "Bearer revoked":
        return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})
    if url == "https://www.googleapis.com/drive/v3/files":
        return httpx.Response(200, json={"files": [
            {"id": "file-1", "name": "a.pdf", "mimeType": "application/pdf", "size": "4"},
        ]})
    if url.startswith("https://www.googleapis.com/drive/v3/files/"):
        return httpx.Response(200, content=b"data")
    return httpx.Response(404)


@pytest.fixture
def client(supabase, storage):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider_api))
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_http_client] = lambda: http_client
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True


@pytest.fixture
def users(supabase):
    supabase.add_user("client-token", "user-1", organization_id="org-1", role="client")
    supabase.add_user("staff-token", "user-2", organization_id="org-1", role="staff")
    supabase.add_user("admin-token", "user-3", organization_id="org-1", role="super_admin")
    supabase.add_user("orphan-token", "user-4", organization_id=None, role="client")
    return supabase


def connect_drive(supabase, user_id="user-1", **overrides):
    row = {
        "id": f"int-{user_id}",
        "user_id": user_id,
        "organization_id": "org-1",
        "provider": "google_drive",
        "access_token": "at-1",
        "refresh_token": "rt-1",
        "token_expires_at": None,
        "metadata": {},
        "status": "active",
        "last_sync_at": None,
    }
    row.update(overrides)
    return supabase.insert_row("oauth_integrations", row)


# ============================================================================
# Health
# ============================================================================

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    assert response.headers["x-content-type-options"] == "nosniff"
    assert "x-request-id" in response.headers


# ============================================================================
# Cron
# ============================================================================

class TestCronAuth:
    def test_missing_credentials(self, client, users):
        response = client.get("/api/cron/file-sync")
        assert response.status_code == 401
        assert "error" in response.json()

    def test_invalid_token(self, client, users):
        assert client.get("/api/cron/file-sync", headers=auth("nope")).status_code == 401

    def test_non_super_admin_forbidden(self, client, users):
        assert client.get("/api/cron/file-sync", headers=auth("staff-token")).status_code == 403

    def test_cron_secret(self, client, users):
        response = client.get("/api/cron/file-sync", headers=auth("cron-secret"))
        assert response.status_code == 200
        assert response.json() == {"processed": 0, "results": []}

    def test_super_admin_session(self, client, users):
        connect_drive(users)
        response = client.get("/api/cron/file-sync", headers=auth("admin-token"))
        assert response.status_code == 200
        body = response.json()
        assert body["processed"] == 1
        assert body["results"][0]["status"] == "success"
        assert body["results"][0]["uploaded"] == 1


def test_cron_reports_results_when_lease_release_fails(client, users):
    connect_drive(users)
    users.fail("file_sync_leases", "delete", httpx.ConnectError("network down"))

    response = client.get("/api/cron/file-sync", headers=auth("cron-secret"))

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] == 1
    assert body["results"][0]["status"] == "success"


def test_cron_selection_failure_is_500(client, supabase):
    supabase.fail("oauth_integrations", "select", APIError({
        "message": "connection refused", "code": "08006", "hint": None, "details": None,
    }))
    response = client.get("/api/cron/file-sync", headers=auth("cron-secret"))
    assert response.status_code == 500
    assert "connection refused" in response.json()["error"]


# ============================================================================
# Manual sync
# ============================================================================

class TestManualSync:
    def test_requires_auth(self, client):
        assert client.post("/api/file-sync", json={"provider": "google_drive"}).status_code == 401

    def test_rejects_unknown_provider(self, client, users):
        response = client.post("/api/file-sync", json={"provider": "box"}, headers=auth("client-token"))
        assert response.status_code == 422

    def test_no_organization(self, client, users):
        response = client.post("/api/file-sync", json={"provider": "google_drive"}, headers=auth("orphan-token"))
        assert response.status_code == 400
        assert response.json() == {"error": "No organization found"}

    def test_storage_disabled(self, client, users):
        users.insert_row("organization_file_storage_settings", {"organization_id": "org-1", "enabled": False})
        response = client.post("/api/file-sync", json={"provider": "google_drive"}, headers=auth("client-token"))
        assert response.status_code == 403

    def test_not_connected(self, client, users):
        response = client.post("/api/file-sync", json={"provider": "dropbox"}, headers=auth("client-token"))
        assert response.status_code == 400
        assert response.json() == {"error": "Provider not connected"}

    def test_lease_held(self, client, users):
        connect_drive(users)
        users.insert_row("file_sync_leases", {
            "oauth_integration_id": "int-user-1",
            "holder": "cron",
            "expires_at": (datetime.now(timezone.utc) + timedelta(minutes=5)).isoformat(),
        })
        response = client.post("/api/file-sync", json={"provider": "google_drive"}, headers=auth("client-token"))
        assert response.status_code == 409
        assert response.json() == {"error": "Sync already in progress"}

    def test_success(self, client, users):
        connect_drive(users)
        response = client.post("/api/file-sync", json={"provider": "google_drive"}, headers=auth("client-token"))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["stats"] == {"uploaded": 1, "skipped": 0}
        assert body["data"]["run_id"] == users.rows("file_sync_runs")[0]["id"]

    def test_failure_reports_run(self, client, users):
        connect_drive(users, access_token="revoked")
        response = client.post("/api/file-sync", json={"provider": "google_drive"}, headers=auth("client-token"))
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Sync failed"
        assert "401" in body["details"]
        assert body["run_id"] == users.rows("file_sync_runs")[0]["id"]


# ============================================================================
# OAuth connect / callback / disconnect
# ============================================================================

class TestConnect:
    def test_auth_url_carries_signed_state(self, client, users):
        response = client.get("/api/file-integrations/google-drive", headers=auth("client-token"))
        assert response.status_code == 200
        url = urlparse(response.json()["authUrl"])
        params = parse_qs(url.query)
        assert url.netloc == "accounts.google.com"
        assert params["redirect_uri"] == ["https://portal.test/api/file-integrations/google-drive/callback"]
        assert decode_state(params["state"][0])["userId"] == "user-1"

    def test_unknown_provider(self, client, users):
        assert client.get("/api/file-integrations/box", headers=auth("client-token")).status_code == 404


class TestCallback:
    def callback(self, client, **params):
        return client.get(
            "/api/file-integrations/google-drive/callback",
            params=params,
            follow_redirects=False,
        )

    def test_provider_error_is_forwarded(self, client):
        response = self.callback(client, error="access_denied")
        assert response.status_code == 302
        assert response.headers["location"] == f"{SETTINGS_PAGE}?error=access_denied"

    def test_missing_params(self, client):
        assert self.callback(client, code="c").headers["location"] == f"{SETTINGS_PAGE}?error=missing_params"

    def test_invalid_state(self, client):
        response = self.callback(client, code="c", state="forged.state")
        assert response.headers["location"] == f"{SETTINGS_PAGE}?error=invalid_state"

    def test_expired_state(self, client):
        state = encode_state("user-1", now=time.time() - 3600)
        response = self.callback(client, code="c", state=state)
        assert response.headers["location"] == f"{SETTINGS_PAGE}?error=state_expired"

    def test_token_exchange_failure(self, client, users):
        response = self.callback(client, code="bad-code", state=encode_state("user-1"))
        assert response.headers["location"] == f"{SETTINGS_PAGE}?error=token_exchange_failed"
        assert users.rows("oauth_integrations") == []

    def test_success_upserts_integration(self, client, users):
        connect_drive(users, status="disconnected", access_token=None)

        response = self.callback(client, code="good-code", state=encode_state("user-1"))

        assert response.headers["location"] == f"{SETTINGS_PAGE}?success=google_drive_connected"
        rows = users.rows("oauth_integrations")
        assert len(rows) == 1
        row = rows[0]
        assert row["status"] == "active"
        assert row["access_token"] == "at-new"
        assert row["refresh_token"] == "rt-new"
        assert row["provider_user_id"] == "g-123"
        assert row["provider_email"] == "owner@example.com"
        assert row["organization_id"] == "org-1"
        assert row["scopes"] == ["https://www.googleapis.com/auth/drive.readonly", "openid"]
        assert row["token_expires_at"] is not None

    def test_save_failure(self, client, users):
        users.fail("oauth_integrations", "upsert", APIError({
            "message": "rls", "code": "42501", "hint": None, "details": None,
        }))
        response = self.callback(client, code="good-code", state=encode_state("user-1"))
        assert response.headers["location"] == f"{SETTINGS_PAGE}?error=save_failed"


def test_disconnect_clears_tokens(client, users):
    connect_drive(users)
    response = client.delete("/api/file-integrations/google_drive", headers=auth("client-token"))
    assert response.status_code == 200
    row = users.rows("oauth_integrations")[0]
    assert row["status"] == "disconnected"
    assert row["access_token"] is None
    assert row["refresh_token"] is None


# ============================================================================
# Storage settings
# ============================================================================

class TestStorageSettings:
    def test_defaults_without_row(self, client, users):
        connect_drive(users)
        response = client.get("/api/file-storage/settings", headers=auth("client-token"))
        assert response.status_code == 200
        body = response.json()
        assert body["settings"] == {"organization_id": "org-1", "s3_prefix": None, "enabled": True}
        assert len(body["integrations"]) == 1
        assert body["recent_runs"] == []

    def test_client_cannot_update(self, client, users):
        response = client.put(
            "/api/file-storage/settings",
            json={"s3_prefix": "x", "enabled": True},
            headers=auth("client-token"),
        )
        assert response.status_code == 403

    def test_staff_update_normalizes_prefix(self, client, users):
        response = client.put(
            "/api/file-storage/settings",
            json={"s3_prefix": " /clients//acme/../ ", "enabled": False},
            headers=auth("staff-token"),
        )
        assert response.status_code == 200
        assert response.json() == {"organization_id": "org-1", "s3_prefix": "clients/acme", "enabled": False}
        row = users.rows("organization_file_storage_settings")[0]
        assert row["s3_prefix"] == "clients/acme"
        assert row["enabled"] is False
        assert row["updated_by"] == "user-2"
