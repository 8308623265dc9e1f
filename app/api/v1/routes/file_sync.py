"""
Manual File Sync Routes
"Sync now" for the caller's own connected drive
"""
import logging
from typing import Any, Dict

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from supabase import Client

from app.core.dependencies import get_http_client, get_storage, get_supabase
from app.core.security import get_current_user_context
from app.middleware.rate_limit import MANUAL_SYNC_LIMIT, limiter
from app.models.schemas import ManualSyncRequest
from app.services.sync import MAX_FILES_PER_MANUAL_RUN, ObjectStorage, sync_integration
from app.services.sync.database import get_storage_settings, get_user_integration
from app.services.sync.orchestration.file_sync import SKIP_LEASE_HELD

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["file-sync"])


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@router.post("/file-sync")
@limiter.limit(MANUAL_SYNC_LIMIT)
async def trigger_file_sync(
    request: Request,  # Required for rate limiting
    body: ManualSyncRequest,
    user_context: Dict[str, Any] = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    storage: ObjectStorage = Depends(get_storage)
):
    """
    Sync up to MAX_FILES_PER_MANUAL_RUN files from one provider right now.

    Uses the same per-integration pass as the scheduler, so the cursor,
    lease and run history are shared with it.
    """
    user_id = user_context["user_id"]
    provider = body.provider.value
    organization_id = user_context.get("organization_id")

    logger.info(f"🔘 Manual file sync requested: {provider} for user {user_id}")

    if not organization_id:
        return _error(400, "No organization found")

    storage_settings = await get_storage_settings(supabase, organization_id)
    if storage_settings and storage_settings.get("enabled") is False:
        return _error(403, "File storage is disabled for this organization")

    integration = await get_user_integration(supabase, user_id, provider)
    if not integration or not integration.get("access_token"):
        return _error(400, "Provider not connected")

    integration = {**integration, "organization_id": integration.get("organization_id") or organization_id}

    result = await sync_integration(
        http_client,
        supabase,
        storage,
        integration,
        max_files=MAX_FILES_PER_MANUAL_RUN
    )

    if result.status == "skipped":
        if result.error == SKIP_LEASE_HELD:
            return _error(409, SKIP_LEASE_HELD)
        return _error(400, result.error or "Sync skipped")

    if result.status == "error":
        return _error(500, "Sync failed", details=result.error, run_id=result.run_id)

    return {
        "success": True,
        "data": {
            "run_id": result.run_id,
            "stats": result.stats,
        },
    }
