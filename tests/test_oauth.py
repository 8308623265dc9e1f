import time
from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import settings
from app.services.sync.errors import ProviderNotConfiguredError
from app.services.sync.oauth import (
    ExpiredStateError,
    InvalidStateError,
    decode_state,
    encode_state,
    expires_at_from,
    get_client_credentials,
    is_token_expired,
    refresh_redirect_uri,
)
from app.services.sync.providers import Provider, ProviderAdapter, get_adapter

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestTokenExpiry:
    def test_missing_expiry_never_refreshes(self):
        assert is_token_expired(None, now=NOW) is False

    def test_inside_margin_counts_as_expired(self):
        assert is_token_expired((NOW + timedelta(seconds=30)).isoformat(), now=NOW) is True

    def test_past_expiry(self):
        assert is_token_expired("2025-12-31T00:00:00Z", now=NOW) is True

    def test_comfortably_valid(self):
        assert is_token_expired((NOW + timedelta(minutes=10)).isoformat(), now=NOW) is False

    def test_expires_at_from(self):
        assert expires_at_from(3600, now=NOW) == (NOW + timedelta(hours=1)).isoformat()
        assert expires_at_from(None, now=NOW) is None


class TestConnectState:
    def test_round_trip(self):
        state = encode_state("user-1", now=time.time())
        assert decode_state(state)["userId"] == "user-1"

    def test_tampered_payload_rejected(self):
        state = encode_state("user-1")
        body, signature = state.split(".")
        forged = encode_state("user-2").split(".")[0]
        with pytest.raises(InvalidStateError):
            decode_state(f"{forged}.{signature}")

    def test_garbage_rejected(self):
        for bad in ("", "no-dot", "abc.def", "é.ü"):
            with pytest.raises(InvalidStateError):
                decode_state(bad)

    def test_expired_after_ten_minutes(self):
        issued = time.time() - 11 * 60
        state = encode_state("user-1", now=issued)
        with pytest.raises(ExpiredStateError):
            decode_state(state)

    def test_missing_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "oauth_state_secret", None)
        with pytest.raises(ProviderNotConfiguredError):
            encode_state("user-1")


class TestClientCredentials:
    def test_redirect_uri_uses_callback_slug(self):
        creds = get_client_credentials(get_adapter(Provider.MICROSOFT_ONEDRIVE))
        assert creds.redirect_uri == "https://portal.test/api/file-integrations/microsoft-onedrive/callback"

    def test_only_microsoft_sends_redirect_on_refresh(self):
        for provider in Provider:
            adapter = get_adapter(provider)
            creds = get_client_credentials(adapter)
            expected = creds.redirect_uri if provider == Provider.MICROSOFT_ONEDRIVE else None
            assert refresh_redirect_uri(adapter, creds) == expected

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "google_client_secret", None)
        with pytest.raises(ProviderNotConfiguredError, match="Google OAuth is not configured"):
            get_client_credentials(get_adapter("google_drive"))

    def test_new_adapter_needs_no_dispatch_changes(self):
        class MirrorAdapter(ProviderAdapter):
            label = "Mirror"
            callback_slug = "mirror"
            client_id_setting = "dropbox_client_id"
            client_secret_setting = "dropbox_client_secret"
            oauth_app_name = "Mirror"
            sends_redirect_on_refresh = True

        adapter = MirrorAdapter()
        creds = get_client_credentials(adapter)

        assert (creds.client_id, creds.client_secret) == ("dbx-id", "dbx-secret")
        assert refresh_redirect_uri(adapter, creds) == "https://portal.test/api/file-integrations/mirror/callback"
