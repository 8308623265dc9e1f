"""
Storage Settings Schemas
Organization-level S3 settings and the integration overview
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class StorageSettingsUpdate(BaseModel):
    """
    Body of PUT /api/file-storage/settings.
    s3_prefix is normalized server-side; null or blank means "org/<organization_id>".
    """
    s3_prefix: Optional[str] = Field(default=None, max_length=1024)
    enabled: bool = True


class StorageSettings(BaseModel):
    organization_id: str
    s3_prefix: Optional[str] = None
    enabled: bool = True


class StorageOverview(BaseModel):
    """Response for GET /api/file-storage/settings."""
    settings: StorageSettings
    integrations: List[Dict[str, Any]]
    recent_runs: List[Dict[str, Any]]
