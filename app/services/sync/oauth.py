"""
Provider OAuth helpers
Client credential lookup, signed connect state, and token expiry math
"""
import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

from app.core.config import settings
from app.services.sync.errors import ProviderNotConfiguredError
from app.services.sync.providers import ProviderAdapter

logger = logging.getLogger(__name__)

# Refresh this long before the recorded expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 60

# Connect state older than this is rejected by the callback
STATE_MAX_AGE_SECONDS = 10 * 60


@dataclass
class ClientCredentials:
    client_id: str
    client_secret: str
    redirect_uri: str


def get_client_credentials(adapter: ProviderAdapter) -> ClientCredentials:
    """
    Resolve OAuth app credentials for a provider from settings.

    Raises:
        ProviderNotConfiguredError: If the client id or secret is missing
    """
    client_id = getattr(settings, adapter.client_id_setting, None)
    client_secret = getattr(settings, adapter.client_secret_setting, None)

    if not client_id or not client_secret:
        raise ProviderNotConfiguredError(f"{adapter.oauth_app_name} OAuth is not configured")

    return ClientCredentials(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=f"{settings.oauth_redirect_base}/{adapter.callback_slug}/callback",
    )


def refresh_redirect_uri(adapter: ProviderAdapter, credentials: ClientCredentials) -> Optional[str]:
    if adapter.sends_redirect_on_refresh:
        return credentials.redirect_uri
    return None


# ============================================================================
# TOKEN EXPIRY
# ============================================================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Supabase timestamptz (ISO 8601, possibly with Z) into an aware datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = date_parser.isoparse(str(value))
    except (ValueError, OverflowError):
        logger.warning(f"Failed to parse timestamp: {value}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_token_expired(token_expires_at: Any, now: Optional[datetime] = None) -> bool:
    """
    True if the token expires within the safety margin.

    A missing expiry means the provider issued a non-expiring token.
    """
    expires_at = parse_timestamp(token_expires_at)
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return expires_at < now + timedelta(seconds=TOKEN_EXPIRY_MARGIN_SECONDS)


def expires_at_from(expires_in: Optional[int], now: Optional[datetime] = None) -> Optional[str]:
    if not expires_in:
        return None
    now = now or datetime.now(timezone.utc)
    return (now + timedelta(seconds=expires_in)).isoformat()


# ============================================================================
# CONNECT STATE
# ============================================================================

def _state_key() -> bytes:
    if not settings.oauth_state_secret:
        raise ProviderNotConfiguredError("OAuth state secret is not configured")
    return settings.oauth_state_secret.encode("utf-8")


def encode_state(user_id: str, now: Optional[float] = None) -> str:
    """
    Build the state parameter carried through the provider redirect.

    Format: base64url(json{"userId", "ts"}) + "." + hex HMAC-SHA256
    """
    payload = json.dumps({"userId": user_id, "ts": int((now or time.time()) * 1000)}, separators=(",", ":"))
    body = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")
    signature = hmac.new(_state_key(), body.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{body}.{signature}"


class InvalidStateError(ValueError):
    pass


class ExpiredStateError(ValueError):
    pass


def decode_state(state: str, now: Optional[float] = None) -> Dict[str, Any]:
    """
    Verify and decode a connect state.

    Raises:
        InvalidStateError: Malformed or tampered state
        ExpiredStateError: State older than STATE_MAX_AGE_SECONDS
    """
    try:
        body, signature = state.rsplit(".", 1)
    except ValueError:
        raise InvalidStateError("malformed state")

    expected = hmac.new(_state_key(), body.encode("utf-8"), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
        raise InvalidStateError("signature mismatch")

    try:
        padded = body + "=" * (-len(body) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        user_id = data["userId"]
        ts = int(data["ts"])
    except (ValueError, KeyError, TypeError):
        raise InvalidStateError("undecodable state")

    age_ms = (now or time.time()) * 1000 - ts
    if age_ms > STATE_MAX_AGE_SECONDS * 1000:
        raise ExpiredStateError("state expired")

    return {"userId": user_id, "ts": ts}
