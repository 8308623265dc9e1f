"""
Security and Authentication
Handles Supabase JWT validation and the scheduler's shared secret

SECURITY FEATURES:
- JWT validation via Supabase Auth
- Organization + role read from the users table (service role)
- Cron secret checked with timing-safe comparison
"""
import logging
import hmac
from typing import Any, Dict, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client

from app.core.dependencies import get_supabase
from app.core.config import settings

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is a 401 (FastAPI's default is 403)
bearer_scheme = HTTPBearer(auto_error=False)

SETTINGS_ADMIN_ROLES = ("super_admin", "staff")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


# ============================================================================
# JWT AUTHENTICATION (Supabase)
# ============================================================================

async def resolve_user_context(token: str, supabase: Client) -> Dict[str, Any]:
    """
    Validate a Supabase access token and load the caller's profile.

    Returns:
        dict with:
        - user_id: User ID from the JWT
        - email: User email
        - organization_id: From users.organization_id (may be None)
        - role: From users.role (may be None)

    Raises:
        HTTPException 401 if the token is invalid
    """
    try:
        response = supabase.auth.get_user(token)
    except Exception as e:
        logger.warning(f"JWT validation error: {e}")
        raise _unauthorized("Invalid authentication token")

    if not response or not response.user:
        logger.warning("JWT validation failed: no user returned")
        raise _unauthorized("Invalid authentication token")

    user = response.user

    profile = supabase.table("users")\
        .select("organization_id, role")\
        .eq("id", user.id)\
        .maybe_single()\
        .execute()
    profile_data = (profile.data if profile else None) or {}

    return {
        "user_id": user.id,
        "email": user.email,
        "organization_id": profile_data.get("organization_id"),
        "role": profile_data.get("role"),
    }


async def get_current_user_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    supabase: Client = Depends(get_supabase)
) -> Dict[str, Any]:
    """
    Authenticated caller context for user-facing routes.

    Raises:
        HTTPException 401 if the header is missing or the token invalid
    """
    if not credentials:
        logger.warning("No authorization credentials provided")
        raise _unauthorized("Authorization header required")

    context = await resolve_user_context(credentials.credentials, supabase)
    request.state.user_id = context["user_id"]
    logger.info(f"✅ User authenticated: {sanitize_for_logging(context['email'] or '')}")
    return context


async def require_settings_admin(
    user_context: Dict[str, Any] = Depends(get_current_user_context)
) -> Dict[str, Any]:
    """Only super_admin and staff may change organization storage settings."""
    if user_context.get("role") not in SETTINGS_ADMIN_ROLES:
        logger.warning(f"User {user_context['user_id']} (role {user_context.get('role')}) denied settings update")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return user_context


# ============================================================================
# SCHEDULER AUTHENTICATION (cron secret or super_admin session)
# ============================================================================

def is_cron_secret(token: str) -> bool:
    if not settings.cron_secret:
        return False
    # Timing-safe comparison
    return hmac.compare_digest(token.encode("utf-8"), settings.cron_secret.encode("utf-8"))


async def require_cron_or_super_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    supabase: Client = Depends(get_supabase)
) -> Dict[str, Any]:
    """
    Authorize the scheduled sync call.

    Accepts `Authorization: Bearer <CRON_SECRET>` or a Supabase session
    belonging to a super_admin.

    Raises:
        HTTPException 401 if credentials are missing or invalid
        HTTPException 403 if the session user is not a super_admin
    """
    if not credentials:
        raise _unauthorized("Unauthorized")

    token = credentials.credentials
    if is_cron_secret(token):
        logger.info("✅ Cron secret authenticated")
        return {"source": "cron"}

    context = await resolve_user_context(token, supabase)
    if context.get("role") != "super_admin":
        logger.warning(f"Non-super-admin {context['user_id']} attempted to trigger file sync")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    logger.info(f"✅ Super admin {context['user_id']} triggered file sync")
    return {"source": "user", **context}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def sanitize_for_logging(text: str, max_length: int = 50) -> str:
    """
    Sanitize sensitive data for logging (prevent PII leakage).

    Example:
        "user@example.com" -> "u***@example.com"
    """
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length] + "..."

    if "@" in text:
        local, _, domain = text.partition("@")
        masked_local = local[0] + "***" if len(local) > 1 else local
        text = f"{masked_local}@{domain}"

    return text
