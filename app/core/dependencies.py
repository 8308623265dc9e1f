"""
Dependency Injection
Provides reusable dependencies for FastAPI routes

DEPENDENCIES:
- Supabase client (database + auth)
- HTTP client (provider APIs and token endpoints)
- Object storage (S3 destination for synced files)
"""
import logging
from typing import Optional

import httpx
from supabase import create_client, Client

from app.core.config import settings
from app.services.sync.storage import ObjectStorage

logger = logging.getLogger(__name__)

# ============================================================================
# GLOBAL CLIENTS (initialized once, reused across requests)
# ============================================================================

_supabase_client: Optional[Client] = None

_http_client: Optional[httpx.AsyncClient] = None

_object_storage: Optional[ObjectStorage] = None


# ============================================================================
# INITIALIZATION (called on app startup)
# ============================================================================

def create_supabase_client() -> Client:
    # Backend uses the service role
    return create_client(settings.supabase_url, settings.supabase_service_key)


def create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.provider_http_timeout)


async def initialize_clients():
    """
    Initialize all global clients on app startup.

    Called from main.py lifespan event.
    """
    global _supabase_client, _http_client, _object_storage

    logger.info("Initializing global clients...")

    try:
        _supabase_client = create_supabase_client()
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    _http_client = create_http_client()
    logger.info(f"✅ HTTP client initialized (timeout {settings.provider_http_timeout}s)")

    _object_storage = ObjectStorage.from_settings()
    if settings.aws_s3_bucket_name:
        logger.info(f"✅ Object storage initialized (bucket: {settings.aws_s3_bucket_name})")
    else:
        logger.warning("⚠️  No S3 bucket configured, sync uploads will fail")

    logger.info("✅ All clients initialized successfully")


async def shutdown_clients():
    """
    Shutdown all global clients on app shutdown.

    Called from main.py lifespan event.
    """
    global _supabase_client, _http_client, _object_storage

    logger.info("Shutting down global clients...")

    if _http_client:
        try:
            await _http_client.aclose()
            logger.info("✅ HTTP client closed")
        except Exception as e:
            logger.error(f"Error closing HTTP client: {e}")

    # Supabase and boto3 don't need explicit cleanup
    _supabase_client = None
    _http_client = None
    _object_storage = None

    logger.info("✅ All clients shutdown complete")


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Get Supabase client for dependency injection.

    Usage:
        @router.get("/example")
        async def example(supabase: Client = Depends(get_supabase)):
            result = supabase.table("oauth_integrations").select("*").execute()
            return result.data

    Returns:
        Supabase client (service role)
    """
    if _supabase_client is None:
        logger.error("Supabase client not initialized")
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")

    return _supabase_client


def get_http_client() -> httpx.AsyncClient:
    """Shared AsyncClient for provider API and token calls."""
    if _http_client is None:
        logger.error("HTTP client not initialized")
        raise RuntimeError("HTTP client not initialized. Call initialize_clients() first.")

    return _http_client


def get_storage() -> ObjectStorage:
    if _object_storage is None:
        logger.error("Object storage not initialized")
        raise RuntimeError("Object storage not initialized. Call initialize_clients() first.")

    return _object_storage
