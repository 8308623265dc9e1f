"""
Sync Schemas
Models for the scheduled and manual file sync endpoints
"""
from typing import List, Literal, Optional
from pydantic import BaseModel

from app.services.sync.providers import Provider


class ManualSyncRequest(BaseModel):
    """Body of POST /api/file-sync."""
    provider: Provider


class SyncStats(BaseModel):
    uploaded: int = 0
    skipped: int = 0


class IntegrationResult(BaseModel):
    """Outcome of one integration within a batch pass."""
    integration_id: str
    provider: str
    status: Literal["success", "skipped", "error"]
    uploaded: int
    skipped: int
    error: Optional[str] = None


class CronSyncResponse(BaseModel):
    processed: int
    results: List[IntegrationResult]


class ManualSyncData(BaseModel):
    run_id: Optional[str] = None
    stats: SyncStats


class ManualSyncResponse(BaseModel):
    success: bool = True
    data: ManualSyncData
