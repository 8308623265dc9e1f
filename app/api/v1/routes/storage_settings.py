"""
Storage Settings Routes
Organization S3 prefix / enable flag, plus connected drives and recent runs
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from supabase import Client

from app.core.dependencies import get_supabase
from app.core.security import get_current_user_context, require_settings_admin
from app.models.schemas import StorageOverview, StorageSettings, StorageSettingsUpdate
from app.services.sync.database import get_storage_settings
from app.services.sync.keys import normalize_prefix
from app.services.sync.providers import SUPPORTED_PROVIDERS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/file-storage", tags=["file-storage"])

RECENT_RUNS_LIMIT = 10

# Never return tokens to the browser
PUBLIC_INTEGRATION_COLUMNS = (
    "id, provider, status, provider_email, scopes, token_expires_at, last_sync_at"
)


def _no_organization() -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "No organization found"})


@router.get("/settings", response_model=StorageOverview)
async def get_settings(
    user_context: Dict[str, Any] = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase)
):
    organization_id = user_context.get("organization_id")
    if not organization_id:
        return _no_organization()

    row = await get_storage_settings(supabase, organization_id) or {}

    integrations = supabase.table("oauth_integrations")\
        .select(PUBLIC_INTEGRATION_COLUMNS)\
        .eq("user_id", user_context["user_id"])\
        .in_("provider", SUPPORTED_PROVIDERS)\
        .execute()

    runs = supabase.table("file_sync_runs")\
        .select("id, provider, user_id, status, started_at, finished_at, stats, error")\
        .eq("organization_id", organization_id)\
        .order("started_at", desc=True)\
        .limit(RECENT_RUNS_LIMIT)\
        .execute()

    return StorageOverview(
        settings=StorageSettings(
            organization_id=organization_id,
            s3_prefix=row.get("s3_prefix"),
            enabled=row.get("enabled") is not False,
        ),
        integrations=integrations.data or [],
        recent_runs=runs.data or [],
    )


@router.put("/settings", response_model=StorageSettings)
async def update_settings(
    body: StorageSettingsUpdate,
    user_context: Dict[str, Any] = Depends(require_settings_admin),
    supabase: Client = Depends(get_supabase)
):
    """Upsert the organization's settings; the prefix is normalized before saving."""
    organization_id = user_context.get("organization_id")
    if not organization_id:
        return _no_organization()

    prefix = normalize_prefix(body.s3_prefix)

    supabase.table("organization_file_storage_settings").upsert({
        "organization_id": organization_id,
        "s3_prefix": prefix,
        "enabled": body.enabled,
        "updated_by": user_context["user_id"],
    }, on_conflict="organization_id").execute()

    logger.info(
        f"⚙️  Storage settings updated for organization {organization_id} "
        f"by {user_context['user_id']} (prefix={prefix}, enabled={body.enabled})"
    )

    return StorageSettings(organization_id=organization_id, s3_prefix=prefix, enabled=body.enabled)
