"""
CORS Configuration
Cross-Origin Resource Sharing settings for the portal frontend

SECURITY:
- Origins come from CORS_ALLOWED_ORIGINS (comma-separated)
- app_url is always allowed (the portal itself)
- Development may fall back to "*" without credentials
- NO "null" origin (prevents file:// attacks)
"""
import logging
from typing import List
from fastapi.middleware.cors import CORSMiddleware as FastAPICORSMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)


def parse_allowed_origins(raw: str, app_url: str) -> List[str]:
    origins = []
    for origin in [*(raw or "").split(","), app_url]:
        origin = origin.strip().rstrip("/")
        if origin and origin != "null" and origin not in origins:
            origins.append(origin)
    return origins


def get_cors_middleware():
    """Returns (middleware class, kwargs) for app.add_middleware."""
    allowed_origins = parse_allowed_origins(settings.cors_allowed_origins, settings.app_url)

    if settings.environment == "development" and "*" in allowed_origins:
        logger.warning("⚠️  DEV MODE: CORS allowing ALL origins (*)")
        return FastAPICORSMiddleware, {
            "allow_origins": ["*"],
            "allow_credentials": False,  # Must be False when using "*"
            "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["*"],
            "expose_headers": ["X-Request-ID"],
            "max_age": 600,
        }

    logger.info(f"🌐 CORS allowed origins: {allowed_origins}")

    return FastAPICORSMiddleware, {
        "allow_origins": allowed_origins,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization", "X-Request-ID"],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,  # Cache preflight requests for 10 minutes
    }
