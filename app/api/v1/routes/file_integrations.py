"""
File Integration Routes
OAuth connect / callback / disconnect for Google Drive, OneDrive and Dropbox

FLOW:
1. Portal calls GET /api/file-integrations/{provider} -> {"authUrl"}
2. User consents at the provider
3. Provider redirects to /api/file-integrations/{provider}/callback
4. We exchange the code, upsert oauth_integrations, redirect back to the portal

SECURITY:
- State is HMAC-signed and expires after 10 minutes
- Connect starts are rate limited
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from postgrest.exceptions import APIError
from supabase import Client

from app.core.config import settings
from app.core.dependencies import get_http_client, get_supabase
from app.core.security import get_current_user_context
from app.middleware.rate_limit import OAUTH_START_LIMIT, limiter
from app.services.sync.errors import FileSyncError, ProviderNotConfiguredError
from app.services.sync.oauth import (
    ExpiredStateError,
    InvalidStateError,
    decode_state,
    encode_state,
    expires_at_from,
    get_client_credentials,
)
from app.services.sync.providers import ProviderAdapter, adapter_for_slug

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/file-integrations", tags=["file-integrations"])

SETTINGS_PAGE_PATH = "/dashboard/settings/file-storage"


def settings_redirect(**params: str) -> RedirectResponse:
    """302 back to the portal's file storage settings page."""
    url = f"{settings.app_url.rstrip('/')}{SETTINGS_PAGE_PATH}?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=302)


def _unsupported(provider: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": f"Unsupported provider: {provider}"})


# ============================================================================
# CONNECT
# ============================================================================

@router.get("/{provider}")
@limiter.limit(OAUTH_START_LIMIT)
async def connect_start(
    provider: str,
    request: Request,  # Required for rate limiting
    user_context: Dict[str, Any] = Depends(get_current_user_context)
):
    """Build the provider consent URL carrying a signed state for the caller."""
    adapter = adapter_for_slug(provider)
    if adapter is None:
        return _unsupported(provider)

    try:
        credentials = get_client_credentials(adapter)
        state = encode_state(user_context["user_id"])
    except ProviderNotConfiguredError as e:
        logger.warning(f"⚠️  Connect attempted for unconfigured provider {adapter.provider.value}: {e}")
        return JSONResponse(status_code=400, content={"error": str(e)})

    logger.info(f"🔗 Starting {adapter.label} connect for user {user_context['user_id']}")

    return {"authUrl": adapter.authorization_url(credentials.client_id, credentials.redirect_uri, state)}


# ============================================================================
# CALLBACK
# ============================================================================

async def _lookup_organization_id(supabase: Client, user_id: str) -> Optional[str]:
    result = supabase.table("users")\
        .select("organization_id")\
        .eq("id", user_id)\
        .maybe_single()\
        .execute()
    return ((result.data if result else None) or {}).get("organization_id")


async def complete_connection(
    http_client: httpx.AsyncClient,
    supabase: Client,
    adapter: ProviderAdapter,
    user_id: str,
    code: str
) -> RedirectResponse:
    try:
        credentials = get_client_credentials(adapter)
    except ProviderNotConfiguredError:
        return settings_redirect(error="oauth_not_configured")

    try:
        grant = await adapter.exchange_code(
            http_client,
            credentials.client_id,
            credentials.client_secret,
            code,
            credentials.redirect_uri
        )
    except (FileSyncError, httpx.HTTPError) as e:
        logger.error(f"❌ {adapter.label} code exchange failed: {e}")
        return settings_redirect(error="token_exchange_failed")

    provider_user_id, provider_email = await adapter.fetch_account(http_client, grant.access_token)

    row = {
        "user_id": user_id,
        "organization_id": await _lookup_organization_id(supabase, user_id),
        "provider": adapter.provider.value,
        "access_token": grant.access_token,
        "refresh_token": grant.refresh_token,
        "token_expires_at": expires_at_from(grant.expires_in),
        "provider_user_id": provider_user_id or grant.account_id,
        "provider_email": provider_email,
        "scopes": grant.scope.split() if grant.scope else [],
        "status": "active",
    }

    try:
        supabase.table("oauth_integrations").upsert(row, on_conflict="user_id,provider").execute()
    except APIError as e:
        logger.error(f"❌ Failed to save {adapter.label} integration for user {user_id}: {e}")
        return settings_redirect(error="save_failed")

    logger.info(f"✅ {adapter.label} connected for user {user_id}")
    return settings_redirect(success=f"{adapter.provider.value}_connected")


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Provider redirect target. Always answers with a redirect to the portal,
    carrying either ?success=<provider>_connected or ?error=<reason>.
    """
    if error:
        logger.warning(f"⚠️  Provider returned OAuth error for {provider}: {error}")
        return settings_redirect(error=error)

    if not code or not state:
        return settings_redirect(error="missing_params")

    adapter = adapter_for_slug(provider)
    if adapter is None:
        return _unsupported(provider)

    try:
        state_data = decode_state(state)
    except ExpiredStateError:
        return settings_redirect(error="state_expired")
    except InvalidStateError:
        logger.warning(f"⚠️  Rejected OAuth callback with invalid state for {provider}")
        return settings_redirect(error="invalid_state")
    except ProviderNotConfiguredError:
        return settings_redirect(error="oauth_not_configured")

    try:
        return await complete_connection(http_client, supabase, adapter, state_data["userId"], code)
    except Exception as e:
        logger.error(f"❌ {adapter.label} OAuth callback failed: {e}", exc_info=True)
        return settings_redirect(error="oauth_failed")


# ============================================================================
# DISCONNECT
# ============================================================================

@router.delete("/{provider}")
async def disconnect(
    provider: str,
    user_context: Dict[str, Any] = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase)
):
    """Mark the caller's integration disconnected and drop its tokens."""
    adapter = adapter_for_slug(provider)
    if adapter is None:
        return _unsupported(provider)

    supabase.table("oauth_integrations").update({
        "status": "disconnected",
        "access_token": None,
        "refresh_token": None,
        "token_expires_at": None,
    }).eq("user_id", user_context["user_id"]).eq("provider", adapter.provider.value).execute()

    logger.info(f"🔌 {adapter.label} disconnected for user {user_context['user_id']}")
    return {"success": True}
