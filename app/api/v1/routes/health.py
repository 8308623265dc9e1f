"""
Health Check Routes
System status and service info
"""
import logging
from fastapi import APIRouter

from app.models.schemas import HealthResponse, ServiceInfo
from app.services.sync.providers import SUPPORTED_PROVIDERS

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

SERVICE_VERSION = "1.0.0"


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@router.get("/", response_model=ServiceInfo)
async def root():
    """Root endpoint with API info."""
    return {
        "name": "KT-Portal File Sync",
        "version": SERVICE_VERSION,
        "providers": SUPPORTED_PROVIDERS,
    }
