"""
Database helper functions for the file sync job
Handles integrations, sync runs, cursors, leases and the file index
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from supabase import Client

from app.services.sync.errors import CursorConflictError
from app.services.sync.providers import SUPPORTED_PROVIDERS, TokenGrant
from app.services.sync.oauth import expires_at_from

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

INTEGRATION_COLUMNS = (
    "id, user_id, organization_id, provider, access_token, refresh_token, "
    "token_expires_at, metadata, last_sync_at"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _maybe_data(result) -> Optional[Dict[str, Any]]:
    # maybe_single().execute() returns None instead of an empty response on some client versions
    if result is None:
        return None
    return result.data or None


# ============================================================================
# INTEGRATIONS
# ============================================================================

async def list_eligible_integrations(supabase: Client, limit: int) -> List[Dict[str, Any]]:
    """
    Select integrations for one batch pass.

    Least recently synced first (never-synced rows lead), so integrations
    beyond the per-run cap rotate in on later runs.

    Raises:
        APIError: If the query itself fails (surfaced as HTTP 500 by the route)
    """
    result = supabase.table("oauth_integrations")\
        .select(INTEGRATION_COLUMNS)\
        .in_("provider", SUPPORTED_PROVIDERS)\
        .eq("status", "active")\
        .not_.is_("access_token", "null")\
        .order("last_sync_at", desc=False, nullsfirst=True)\
        .limit(limit)\
        .execute()

    return result.data or []


async def get_user_integration(supabase: Client, user_id: str, provider: str) -> Optional[Dict[str, Any]]:
    result = supabase.table("oauth_integrations")\
        .select(INTEGRATION_COLUMNS + ", status")\
        .eq("user_id", user_id)\
        .eq("provider", provider)\
        .maybe_single()\
        .execute()
    return _maybe_data(result)


async def resolve_organization_id(supabase: Client, integration: Dict[str, Any]) -> Optional[str]:
    """Integration's own organization_id, else the owning user's."""
    if integration.get("organization_id"):
        return integration["organization_id"]

    user_row = _maybe_data(
        supabase.table("users")
        .select("organization_id")
        .eq("id", integration["user_id"])
        .maybe_single()
        .execute()
    )
    return (user_row or {}).get("organization_id")


async def get_storage_settings(supabase: Client, organization_id: str) -> Optional[Dict[str, Any]]:
    return _maybe_data(
        supabase.table("organization_file_storage_settings")
        .select("s3_prefix, enabled")
        .eq("organization_id", organization_id)
        .maybe_single()
        .execute()
    )


async def save_refreshed_token(
    supabase: Client,
    integration_id: str,
    grant: TokenGrant,
    previous_refresh_token: Optional[str]
):
    """
    Persist a refreshed token immediately, before it is used.

    Keeps the old refresh token when the provider does not rotate it.
    """
    supabase.table("oauth_integrations").update({
        "access_token": grant.access_token,
        "refresh_token": grant.refresh_token or previous_refresh_token,
        "token_expires_at": expires_at_from(grant.expires_in),
        "status": "active",
    }).eq("id", integration_id).execute()

    logger.info(f"🔑 Refreshed access token for integration {integration_id}")


async def mark_integration_synced(supabase: Client, integration_id: str, synced_at: str):
    supabase.table("oauth_integrations").update({
        "last_sync_at": synced_at,
        "status": "active",
    }).eq("id", integration_id).execute()


# ============================================================================
# SYNC RUNS
# ============================================================================

async def create_sync_run(
    supabase: Client,
    organization_id: str,
    user_id: str,
    provider: str,
    started_at: str
) -> Optional[str]:
    result = supabase.table("file_sync_runs").insert({
        "organization_id": organization_id,
        "user_id": user_id,
        "provider": provider,
        "status": "running",
        "started_at": started_at,
    }).execute()

    if result.data:
        return result.data[0]["id"]
    return None


async def finalize_sync_run(
    supabase: Client,
    run_id: str,
    status: str,
    stats: Dict[str, int],
    error: Optional[str] = None
):
    payload = {
        "status": status,
        "finished_at": _utcnow().isoformat(),
        "stats": stats,
    }
    if error is not None:
        payload["error"] = error

    supabase.table("file_sync_runs").update(payload).eq("id", run_id).execute()


# ============================================================================
# FILE INDEX
# ============================================================================

async def upsert_synced_file(supabase: Client, row: Dict[str, Any]):
    """Insert-or-update keyed on (organization_id, source_provider, source_file_id)."""
    supabase.table("organization_files").upsert(
        row,
        on_conflict="organization_id,source_provider,source_file_id"
    ).execute()


# ============================================================================
# CURSORS (optimistic concurrency on version)
# ============================================================================

@dataclass
class CursorRecord:
    id: Optional[str]
    version: int
    state: Dict[str, Any] = field(default_factory=dict)


def legacy_cursor_state(integration: Dict[str, Any], provider: str) -> Dict[str, Any]:
    """Cursor previously kept under metadata.file_sync.<provider> on the integration row."""
    metadata = integration.get("metadata")
    if not isinstance(metadata, dict):
        return {}
    file_sync = metadata.get("file_sync")
    if not isinstance(file_sync, dict):
        return {}
    state = file_sync.get(provider)
    return dict(state) if isinstance(state, dict) else {}


async def load_cursor(supabase: Client, integration: Dict[str, Any], provider: str) -> CursorRecord:
    result = supabase.table("file_sync_cursors")\
        .select("id, state, version")\
        .eq("oauth_integration_id", integration["id"])\
        .eq("provider", provider)\
        .limit(1)\
        .execute()

    if result.data:
        row = result.data[0]
        return CursorRecord(id=row["id"], version=row.get("version") or 0, state=row.get("state") or {})

    return CursorRecord(id=None, version=0, state=legacy_cursor_state(integration, provider))


async def save_cursor(
    supabase: Client,
    record: CursorRecord,
    integration_id: str,
    provider: str,
    state: Dict[str, Any]
) -> CursorRecord:
    """
    Write the next cursor state, failing fast on a concurrent writer.

    Raises:
        CursorConflictError: If the record changed (or appeared) since load_cursor
    """
    now = _utcnow().isoformat()

    if record.id is None:
        try:
            result = supabase.table("file_sync_cursors").insert({
                "oauth_integration_id": integration_id,
                "provider": provider,
                "state": state,
                "version": 1,
                "updated_at": now,
            }).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                raise CursorConflictError(f"Cursor for integration {integration_id} was created concurrently")
            raise
        new_id = result.data[0]["id"] if result.data else None
        return CursorRecord(id=new_id, version=1, state=state)

    result = supabase.table("file_sync_cursors").update({
        "state": state,
        "version": record.version + 1,
        "updated_at": now,
    }).eq("id", record.id).eq("version", record.version).execute()

    if not result.data:
        raise CursorConflictError(
            f"Cursor for integration {integration_id} changed during sync (expected version {record.version})"
        )

    return CursorRecord(id=record.id, version=record.version + 1, state=state)


# ============================================================================
# LEASES
# ============================================================================

async def acquire_lease(supabase: Client, integration_id: str, holder: str, lease_seconds: int) -> bool:
    """
    Take the per-integration lease.

    Insert wins when no lease exists; an existing lease is taken over only
    once it has expired. Returns False if someone else holds it.
    """
    now = _utcnow()
    expires_at = (now + timedelta(seconds=lease_seconds)).isoformat()

    try:
        supabase.table("file_sync_leases").insert({
            "oauth_integration_id": integration_id,
            "holder": holder,
            "expires_at": expires_at,
        }).execute()
        return True
    except APIError as e:
        if e.code != UNIQUE_VIOLATION:
            raise

    result = supabase.table("file_sync_leases")\
        .update({"holder": holder, "expires_at": expires_at})\
        .eq("oauth_integration_id", integration_id)\
        .lt("expires_at", now.isoformat())\
        .execute()

    return bool(result.data)


async def extend_lease(supabase: Client, integration_id: str, holder: str, lease_seconds: int) -> bool:
    """
    Push our lease's expiry forward.

    Returns False when the lease is no longer ours (it expired and another
    pass took it over), in which case the caller must stop writing.
    """
    expires_at = (_utcnow() + timedelta(seconds=lease_seconds)).isoformat()

    result = supabase.table("file_sync_leases")\
        .update({"expires_at": expires_at})\
        .eq("oauth_integration_id", integration_id)\
        .eq("holder", holder)\
        .execute()

    return bool(result.data)


async def release_lease(supabase: Client, integration_id: str, holder: str):
    try:
        supabase.table("file_sync_leases")\
            .delete()\
            .eq("oauth_integration_id", integration_id)\
            .eq("holder", holder)\
            .execute()
    except Exception as e:
        # Lease expires on its own; a failed release only delays the next pass
        logger.warning(f"Failed to release lease for integration {integration_id}: {e}")
