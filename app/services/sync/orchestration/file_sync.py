"""
Cloud Drive File Sync Engine
Mirrors Google Drive / OneDrive / Dropbox files into organization-scoped S3

Flow per integration:
1. Resolve organization + storage settings (skip if missing/disabled)
2. Take the integration lease, open a file_sync_runs record
3. Refresh the access token if it expires within 60s (persisted before use)
4. List one page from the saved cursor
5. Download -> upload -> upsert each new or changed file, max N uploads
   (the lease is extended before every download; losing it stops the pass)
6. Save the cursor (optimistic version check), stamp last_sync_at
7. Finalize the run; release the lease
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from supabase import Client

from app.core.config import settings
from app.services.sync.database import (
    acquire_lease,
    create_sync_run,
    extend_lease,
    finalize_sync_run,
    get_storage_settings,
    list_eligible_integrations,
    load_cursor,
    mark_integration_synced,
    release_lease,
    resolve_organization_id,
    save_cursor,
    save_refreshed_token,
    upsert_synced_file,
)
from app.services.sync.errors import LeaseLostError
from app.services.sync.keys import build_object_key, build_org_prefix
from app.services.sync.oauth import (
    get_client_credentials,
    is_token_expired,
    parse_timestamp,
    refresh_redirect_uri,
)
from app.services.sync.providers import ProviderAdapter, RemoteEntry, get_adapter
from app.services.sync.storage import ObjectStorage

logger = logging.getLogger(__name__)

MAX_INTEGRATIONS_PER_RUN = 5
MAX_FILES_PER_INTEGRATION = 5
MAX_FILES_PER_MANUAL_RUN = 10
PAGE_SIZE = 20

# Cursor key for "entries of this page already handled"
OFFSET_KEY = "offset"

SKIP_NO_ORGANIZATION = "Missing organization_id"
SKIP_STORAGE_DISABLED = "Storage disabled"
SKIP_LEASE_HELD = "Sync already in progress"


@dataclass
class IntegrationSyncResult:
    integration_id: str
    provider: str
    status: str = "success"
    uploaded: int = 0
    skipped: int = 0
    error: Optional[str] = None
    run_id: Optional[str] = None

    def skip(self, reason: str) -> "IntegrationSyncResult":
        self.status = "skipped"
        self.error = reason
        return self

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "integration_id": self.integration_id,
            "provider": self.provider,
            "status": self.status,
            "uploaded": self.uploaded,
            "skipped": self.skipped,
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @property
    def stats(self) -> Dict[str, int]:
        return {"uploaded": self.uploaded, "skipped": self.skipped}


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def ensure_access_token(
    http_client: httpx.AsyncClient,
    supabase: Client,
    adapter: ProviderAdapter,
    integration: Dict[str, Any]
) -> str:
    """
    Return a usable access token, refreshing it first if it is about to expire.

    The refreshed token is written back before it is returned, so it
    survives a failure later in the pass.

    Raises:
        ProviderNotConfiguredError: Client credentials missing
        TokenRefreshError: Provider rejected the refresh token
    """
    access_token = integration["access_token"]
    refresh_token = integration.get("refresh_token")

    if not refresh_token or not is_token_expired(integration.get("token_expires_at")):
        return access_token

    logger.info(f"   🔄 Token for integration {integration['id']} expires soon, refreshing")

    credentials = get_client_credentials(adapter)
    grant = await adapter.refresh_access_token(
        http_client,
        credentials.client_id,
        credentials.client_secret,
        refresh_token,
        redirect_uri=refresh_redirect_uri(adapter, credentials)
    )

    await save_refreshed_token(supabase, integration["id"], grant, refresh_token)
    return grant.access_token


async def _existing_files(
    supabase: Client,
    organization_id: str,
    provider: str,
    entries: List[RemoteEntry]
) -> Dict[str, Dict[str, Any]]:
    """Index rows already mirrored for this page, keyed by source_file_id."""
    file_ids = [e.id for e in entries if e.is_file and e.id]
    if not file_ids:
        return {}

    result = supabase.table("organization_files")\
        .select("source_file_id, external_modified_at, size_bytes, s3_key")\
        .eq("organization_id", organization_id)\
        .eq("source_provider", provider)\
        .in_("source_file_id", file_ids)\
        .execute()

    return {row["source_file_id"]: row for row in (result.data or [])}


def is_unchanged(entry: RemoteEntry, existing: Optional[Dict[str, Any]]) -> bool:
    if not existing or not entry.modified_at:
        return False
    remote = parse_timestamp(entry.modified_at)
    stored = parse_timestamp(existing.get("external_modified_at"))
    if remote is None or stored is None or remote != stored:
        return False
    return entry.size is None or existing.get("size_bytes") in (None, entry.size)


async def mirror_entry(
    http_client: httpx.AsyncClient,
    supabase: Client,
    storage: ObjectStorage,
    adapter: ProviderAdapter,
    access_token: str,
    integration: Dict[str, Any],
    organization_id: str,
    prefix: str,
    entry: RemoteEntry,
    existing: Optional[Dict[str, Any]],
    synced_at: str
):
    """
    Download one file, upload it to S3 and upsert its index row.

    If the upsert fails after a fresh upload, the object is deleted again
    unless an existing index row already points at the same key.
    """
    provider = adapter.provider.value
    user_id = integration["user_id"]

    logger.info(f"   📥 Downloading: {entry.name}")
    downloaded = await adapter.download(http_client, access_token, entry)

    key = build_object_key(prefix, entry.id, entry.name)
    uploaded = storage.upload_object(
        key=key,
        body=downloaded.body,
        content_type=downloaded.content_type or entry.mime_type,
        metadata={
            "organizationId": organization_id,
            "userId": user_id,
            "provider": provider,
            "sourceFileId": entry.id,
        }
    )

    row = {
        "organization_id": organization_id,
        "owner_user_id": user_id,
        "oauth_integration_id": integration["id"],
        "source_provider": provider,
        "source_file_id": entry.id,
        "source_path": entry.source_path,
        "name": entry.name,
        "mime_type": entry.mime_type or downloaded.content_type,
        "size_bytes": entry.size,
        "s3_bucket": uploaded.bucket,
        "s3_key": uploaded.key,
        "external_modified_at": entry.modified_at,
        "synced_at": synced_at,
    }

    try:
        await upsert_synced_file(supabase, row)
    except Exception:
        if not existing or existing.get("s3_key") != uploaded.key:
            logger.error(f"   ❌ Index upsert failed for {entry.name}, removing uploaded object")
            storage.delete_object(uploaded.bucket, uploaded.key)
        raise

    logger.info(f"   ✅ Synced: {entry.name} -> s3://{uploaded.bucket}/{uploaded.key}")


async def sync_integration(
    http_client: httpx.AsyncClient,
    supabase: Client,
    storage: ObjectStorage,
    integration: Dict[str, Any],
    max_files: int = MAX_FILES_PER_INTEGRATION,
    page_size: int = PAGE_SIZE
) -> IntegrationSyncResult:
    """
    Run one bounded sync pass for a single integration.

    Never raises: every failure is recorded on the returned result (and on
    the sync run, once one exists).
    """
    provider = integration.get("provider")
    result = IntegrationSyncResult(integration_id=integration["id"], provider=provider)
    lease_holder = None

    try:
        adapter = get_adapter(provider)
        user_id = integration["user_id"]

        organization_id = await resolve_organization_id(supabase, integration)
        if not organization_id:
            logger.warning(f"⏭️  Integration {integration['id']}: no organization, skipping")
            return result.skip(SKIP_NO_ORGANIZATION)

        storage_settings = await get_storage_settings(supabase, organization_id)
        if storage_settings and storage_settings.get("enabled") is False:
            logger.info(f"⏭️  Integration {integration['id']}: storage disabled for organization {organization_id}")
            return result.skip(SKIP_STORAGE_DISABLED)

        holder = str(uuid.uuid4())
        if not await acquire_lease(supabase, integration["id"], holder, settings.file_sync_lease_seconds):
            logger.info(f"⏭️  Integration {integration['id']}: another sync holds the lease")
            return result.skip(SKIP_LEASE_HELD)
        lease_holder = holder

        result.run_id = await create_sync_run(supabase, organization_id, user_id, provider, _utcnow_iso())

        access_token = await ensure_access_token(http_client, supabase, adapter, integration)

        prefix = build_org_prefix(
            organization_id,
            provider,
            user_id,
            override_prefix=(storage_settings or {}).get("s3_prefix")
        )

        cursor = await load_cursor(supabase, integration, provider)
        state = dict(cursor.state)
        offset = int(state.pop(OFFSET_KEY, 0) or 0)

        page = await adapter.list_entries(http_client, access_token, state, page_size)
        existing = await _existing_files(supabase, organization_id, provider, page.entries[offset:])
        synced_at = _utcnow_iso()

        consumed = offset
        for index in range(offset, len(page.entries)):
            if result.uploaded >= max_files:
                break

            entry = page.entries[index]
            if not entry.is_file:
                logger.debug(f"   ⏭️  Skipping non-file entry: {entry.name}")
                result.skipped += 1
            elif is_unchanged(entry, existing.get(entry.id)):
                logger.debug(f"   ⏭️  Unchanged since last sync: {entry.name}")
                result.skipped += 1
            else:
                if not await extend_lease(supabase, integration["id"], lease_holder, settings.file_sync_lease_seconds):
                    raise LeaseLostError(f"Lease for integration {integration['id']} was taken over during sync")
                await mirror_entry(
                    http_client, supabase, storage, adapter, access_token,
                    integration, organization_id, prefix, entry,
                    existing.get(entry.id), synced_at
                )
                result.uploaded += 1
            consumed = index + 1

        # Stopped mid-page: resume this same page after the handled entries
        if consumed < len(page.entries):
            next_state = {**state, OFFSET_KEY: consumed}
        else:
            next_state = page.next_state

        await save_cursor(supabase, cursor, integration["id"], provider, next_state)
        await mark_integration_synced(supabase, integration["id"], synced_at)

        if result.run_id:
            await finalize_sync_run(supabase, result.run_id, "success", result.stats)

        logger.info(
            f"✅ Integration {integration['id']} ({provider}): "
            f"{result.uploaded} uploaded, {result.skipped} skipped"
        )
        return result

    except Exception as e:
        message = str(e) or type(e).__name__
        logger.error(f"❌ File sync failed for integration {integration['id']} ({provider}): {message}", exc_info=True)

        result.status = "error"
        result.error = message

        if result.run_id:
            try:
                await finalize_sync_run(supabase, result.run_id, "error", result.stats, error=message)
            except Exception as finalize_error:
                logger.error(f"Failed to finalize sync run {result.run_id}: {finalize_error}")

        return result

    finally:
        if lease_holder:
            await release_lease(supabase, integration["id"], lease_holder)


async def sync_integrations(
    http_client: httpx.AsyncClient,
    supabase: Client,
    storage: ObjectStorage,
    integrations: List[Dict[str, Any]],
    max_files: int = MAX_FILES_PER_INTEGRATION
) -> Dict[str, Any]:
    """
    Sync already-selected integrations sequentially and independently.

    Never raises; one failure never aborts the batch.

    Returns:
        {"processed": int, "results": [{integration_id, provider, status, uploaded, skipped, error?}]}
    """
    results = []
    for integration in integrations:
        outcome = await sync_integration(http_client, supabase, storage, integration, max_files=max_files)
        results.append(outcome.to_dict())

    logger.info(
        f"✅ File sync pass complete: {len(results)} processed, "
        f"{sum(r['uploaded'] for r in results)} files uploaded, "
        f"{sum(1 for r in results if r['status'] == 'error')} errors"
    )

    return {"processed": len(results), "results": results}


async def run_file_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    storage: ObjectStorage,
    max_integrations: int = MAX_INTEGRATIONS_PER_RUN,
    max_files: int = MAX_FILES_PER_INTEGRATION
) -> Dict[str, Any]:
    """
    One scheduled pass over the least recently synced integrations.

    Raises:
        APIError: Only if the integration selection query fails
    """
    logger.info(f"🚀 Starting file sync pass (max {max_integrations} integrations, {max_files} files each)")

    integrations = await list_eligible_integrations(supabase, max_integrations)
    return await sync_integrations(http_client, supabase, storage, integrations, max_files=max_files)
