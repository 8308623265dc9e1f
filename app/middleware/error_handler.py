"""
Global Error Handler Middleware
Turns exceptions that escape a route into the portal's JSON error shape
"""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Last line of defense for route handlers.

    Routes return their own {"error": ...} bodies for expected failures;
    anything else lands here as a 500 with the same shape.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(
                f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
                exc_info=True,
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "request_id": getattr(request.state, "request_id", None),
                }
            )

            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error"}
            )
