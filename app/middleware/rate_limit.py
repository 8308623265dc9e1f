"""
Rate Limiting
Keeps provider quotas and the sync job safe from hammering, using slowapi

RATE LIMITS:
- Global: 100 requests/minute per caller (default)
- OAuth connect starts: 20/hour
- Manual "sync now": 10/minute

Authenticated requests are keyed by user_id (set on request.state by the
auth dependency), everything else by client IP.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from app.core.config import settings

logger = logging.getLogger(__name__)

OAUTH_START_LIMIT = "20/hour"
MANUAL_SYNC_LIMIT = "10/minute"


def rate_limit_key_func(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


# Redis-backed counters when a broker is configured (shared across instances)
limiter = Limiter(
    key_func=rate_limit_key_func,
    default_limits=["100/minute"],
    storage_uri=settings.redis_url or "memory://",
)
