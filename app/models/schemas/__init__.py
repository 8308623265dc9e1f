"""
Pydantic Schemas
All request/response models for API endpoints
"""

# Health check schemas
from .health import HealthResponse, ServiceInfo

# Storage settings schemas
from .storage import StorageOverview, StorageSettings, StorageSettingsUpdate

# Sync schemas
from .sync import (
    CronSyncResponse,
    IntegrationResult,
    ManualSyncData,
    ManualSyncRequest,
    ManualSyncResponse,
    SyncStats,
)

__all__ = [
    # Health
    "HealthResponse",
    "ServiceInfo",
    # Storage
    "StorageOverview",
    "StorageSettings",
    "StorageSettingsUpdate",
    # Sync
    "CronSyncResponse",
    "IntegrationResult",
    "ManualSyncData",
    "ManualSyncRequest",
    "ManualSyncResponse",
    "SyncStats",
]
