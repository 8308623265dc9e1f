from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.services.sync.database import (
    CursorRecord,
    acquire_lease,
    extend_lease,
    legacy_cursor_state,
    list_eligible_integrations,
    load_cursor,
    release_lease,
    save_cursor,
)
from app.services.sync.errors import CursorConflictError


def _iso(delta_seconds):
    return (datetime.now(timezone.utc) + timedelta(seconds=delta_seconds)).isoformat()


# ============================================================================
# Selection
# ============================================================================

async def test_eligible_integrations_least_recently_synced_first(supabase):
    for ident, provider, token, last_sync in [
        ("a", "google_drive", "t", "2026-10-10T00:00:00+00:00"),
        ("b", "dropbox", "t", None),
        ("c", "microsoft_onedrive", "t", "2026-10-01T00:00:00+00:00"),
        ("d", "gmail", "t", None),
        ("e", "google_drive", None, None),
    ]:
        supabase.insert_row("oauth_integrations", {
            "id": ident, "user_id": f"u-{ident}", "provider": provider,
            "access_token": token, "last_sync_at": last_sync, "status": "active",
        })

    rows = await list_eligible_integrations(supabase, limit=5)

    assert [row["id"] for row in rows] == ["b", "c", "a"]


# ============================================================================
# Cursors
# ============================================================================

def test_legacy_cursor_state_tolerates_odd_metadata():
    assert legacy_cursor_state({"metadata": None}, "dropbox") == {}
    assert legacy_cursor_state({"metadata": {"file_sync": "x"}}, "dropbox") == {}
    assert legacy_cursor_state(
        {"metadata": {"file_sync": {"dropbox": {"cursor": "c1"}}}}, "dropbox"
    ) == {"cursor": "c1"}


class TestCursor:
    async def test_first_save_inserts_version_one(self, supabase):
        record = await load_cursor(supabase, {"id": "int-1", "metadata": {}}, "dropbox")
        assert record == CursorRecord(id=None, version=0, state={})

        saved = await save_cursor(supabase, record, "int-1", "dropbox", {"cursor": "c1"})

        assert saved.version == 1
        reloaded = await load_cursor(supabase, {"id": "int-1"}, "dropbox")
        assert reloaded.state == {"cursor": "c1"}
        assert reloaded.version == 1

    async def test_update_bumps_version(self, supabase):
        record = await save_cursor(supabase, CursorRecord(None, 0), "int-1", "dropbox", {"cursor": "c1"})
        record = await save_cursor(supabase, record, "int-1", "dropbox", {"cursor": "c2"})
        assert record.version == 2
        assert supabase.rows("file_sync_cursors")[0]["state"] == {"cursor": "c2"}

    async def test_stale_version_conflicts(self, supabase):
        first = await save_cursor(supabase, CursorRecord(None, 0), "int-1", "dropbox", {"cursor": "c1"})
        await save_cursor(supabase, first, "int-1", "dropbox", {"cursor": "c2"})

        with pytest.raises(CursorConflictError):
            await save_cursor(supabase, first, "int-1", "dropbox", {"cursor": "stale"})
        assert supabase.rows("file_sync_cursors")[0]["state"] == {"cursor": "c2"}

    async def test_concurrent_first_insert_conflicts(self, supabase):
        await save_cursor(supabase, CursorRecord(None, 0), "int-1", "dropbox", {"cursor": "c1"})
        with pytest.raises(CursorConflictError):
            await save_cursor(supabase, CursorRecord(None, 0), "int-1", "dropbox", {"cursor": "other"})


# ============================================================================
# Leases
# ============================================================================

class TestLease:
    async def test_acquire_free_lease(self, supabase):
        assert await acquire_lease(supabase, "int-1", "run-a", 600) is True
        assert supabase.rows("file_sync_leases")[0]["holder"] == "run-a"

    async def test_live_lease_blocks(self, supabase):
        await acquire_lease(supabase, "int-1", "run-a", 600)
        assert await acquire_lease(supabase, "int-1", "run-b", 600) is False
        assert supabase.rows("file_sync_leases")[0]["holder"] == "run-a"

    async def test_expired_lease_is_taken_over(self, supabase):
        supabase.insert_row("file_sync_leases", {
            "oauth_integration_id": "int-1", "holder": "crashed", "expires_at": _iso(-60),
        })
        assert await acquire_lease(supabase, "int-1", "run-b", 600) is True
        assert supabase.rows("file_sync_leases")[0]["holder"] == "run-b"

    async def test_release_only_own_lease(self, supabase):
        await acquire_lease(supabase, "int-1", "run-a", 600)

        await release_lease(supabase, "int-1", "run-b")
        assert len(supabase.rows("file_sync_leases")) == 1

        await release_lease(supabase, "int-1", "run-a")
        assert supabase.rows("file_sync_leases") == []

    async def test_release_failure_is_not_raised(self, supabase):
        await acquire_lease(supabase, "int-1", "run-a", 600)
        supabase.fail("file_sync_leases", "delete", httpx.ConnectError("network down"))

        await release_lease(supabase, "int-1", "run-a")

        assert len(supabase.rows("file_sync_leases")) == 1

    async def test_extend_own_lease(self, supabase):
        supabase.insert_row("file_sync_leases", {
            "oauth_integration_id": "int-1", "holder": "run-a", "expires_at": _iso(5),
        })

        assert await extend_lease(supabase, "int-1", "run-a", 600) is True

        expires_at = datetime.fromisoformat(supabase.rows("file_sync_leases")[0]["expires_at"])
        assert expires_at > datetime.now(timezone.utc) + timedelta(seconds=500)

    async def test_extend_fails_after_takeover(self, supabase):
        supabase.insert_row("file_sync_leases", {
            "oauth_integration_id": "int-1", "holder": "run-b", "expires_at": _iso(600),
        })
        assert await extend_lease(supabase, "int-1", "run-a", 600) is False
