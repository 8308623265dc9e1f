"""
Cron Routes
Scheduled entry point for the multi-provider file sync

SECURITY:
- Bearer CRON_SECRET (scheduler) or a super_admin session
"""
import logging
from typing import Any, Dict

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from supabase import Client

from app.core.dependencies import get_http_client, get_storage, get_supabase
from app.core.security import require_cron_or_super_admin
from app.services.sync import (
    MAX_FILES_PER_INTEGRATION,
    MAX_INTEGRATIONS_PER_RUN,
    ObjectStorage,
    sync_integrations,
)
from app.services.sync.database import list_eligible_integrations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/file-sync")
async def cron_file_sync(
    caller: Dict[str, Any] = Depends(require_cron_or_super_admin),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    storage: ObjectStorage = Depends(get_storage)
):
    """
    Run one bounded sync pass over the least recently synced integrations.

    Per-integration failures are reported in `results`; only a failure to
    select integrations turns the whole call into a 500.
    """
    logger.info(f"⏰ File sync triggered by {caller.get('source')}")

    try:
        integrations = await list_eligible_integrations(supabase, MAX_INTEGRATIONS_PER_RUN)
    except Exception as e:
        logger.error(f"❌ Failed to select integrations for file sync: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e) or "File sync failed"})

    return await sync_integrations(
        http_client,
        supabase,
        storage,
        integrations,
        max_files=MAX_FILES_PER_INTEGRATION
    )
