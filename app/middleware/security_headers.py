"""
Security Headers Middleware
Adds browser hardening headers to every API response
"""
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)

STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # JSON API only: no scripts, no framing
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses.

    Responses are marked no-store: settings and integration listings are
    per-user and must not land in shared caches.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        for name, value in STATIC_HEADERS.items():
            response.headers[name] = value

        response.headers.setdefault("Cache-Control", "no-store")

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if "server" in response.headers:
            del response.headers["server"]

        return response
