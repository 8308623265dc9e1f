"""
KT-Portal File Sync Service
===========================
Version: 1.0.0

FastAPI application entry point.

Architecture:
- app/core/: Configuration, dependencies, security
- app/middleware/: Error handling, logging, CORS, rate limiting
- app/models/: Pydantic schemas
- app/services/sync/: Provider adapters, S3 storage, sync orchestration
- app/services/jobs/: Dramatiq background jobs
- app/api/v1/routes/: API endpoints
"""
import sys
import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Startup error handling
try:
    # Import core components
    from app.core.config import settings
    from app.core.dependencies import initialize_clients, shutdown_clients

    # Import middleware
    from app.middleware.error_handler import ErrorHandlerMiddleware
    from app.middleware.logging import RequestLoggingMiddleware
    from app.middleware.cors import get_cors_middleware
    from app.middleware.security_headers import SecurityHeadersMiddleware
    from app.middleware.rate_limit import limiter

    # Import routes
    from app.api.v1.routes.health import router as health_router, SERVICE_VERSION
    from app.api.v1.routes.cron import router as cron_router
    from app.api.v1.routes.file_sync import router as file_sync_router
    from app.api.v1.routes.file_integrations import router as file_integrations_router
    from app.api.v1.routes.storage_settings import router as storage_settings_router

except Exception as e:
    print(f"🚨 FATAL STARTUP ERROR: {e}", file=sys.stderr)
    print(f"Traceback:\n{traceback.format_exc()}", file=sys.stderr)
    sys.exit(1)

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.environment == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============================================================================
# SENTRY ERROR TRACKING
# ============================================================================

if settings.sentry_dsn:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
            integrations=[
                FastApiIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ],
            # OAuth tokens travel in headers and bodies
            send_default_pii=False,
        )
        logger.info("✅ Sentry error tracking initialized")
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry: {e}")
else:
    logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")

# ============================================================================
# LIFECYCLE MANAGEMENT
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    logger.info("=" * 80)
    logger.info("Starting KT-Portal File Sync")
    logger.info("=" * 80)
    logger.info(f"Version: {SERVICE_VERSION}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Port: {settings.port}")

    await initialize_clients()

    logger.info("✅ File sync service started")

    yield

    logger.info("Shutting down file sync service...")
    await shutdown_clients()
    logger.info("✅ Shutdown complete")


# ============================================================================
# APP INITIALIZATION
# ============================================================================

app = FastAPI(
    title="KT-Portal File Sync API",
    description="Mirrors connected cloud drives into organization S3 storage",
    version=SERVICE_VERSION,
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Portal clients expect {"error": ...} rather than FastAPI's {"detail": ...}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None)
    )


# ============================================================================
# RATE LIMITING
# ============================================================================

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
logger.info("✅ Rate limiting enabled")

# ============================================================================
# MIDDLEWARE (order matters!)
# ============================================================================

app.add_middleware(SecurityHeadersMiddleware)

cors_middleware, cors_config = get_cors_middleware()
app.add_middleware(cors_middleware, **cors_config)

app.add_middleware(RequestLoggingMiddleware)

# Global error handler (must be last)
app.add_middleware(ErrorHandlerMiddleware)

# ============================================================================
# ROUTES
# ============================================================================

app.include_router(health_router)
app.include_router(cron_router)
app.include_router(file_sync_router)
app.include_router(file_integrations_router)
app.include_router(storage_settings_router)

logger.info("✅ All routes registered")

# ============================================================================
# MAIN
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
