"""
Cloud Drive File Sync
Mirrors connected Google Drive / OneDrive / Dropbox files into organization S3
"""
from app.services.sync.orchestration.file_sync import (
    MAX_FILES_PER_INTEGRATION,
    MAX_FILES_PER_MANUAL_RUN,
    MAX_INTEGRATIONS_PER_RUN,
    IntegrationSyncResult,
    run_file_sync,
    sync_integration,
    sync_integrations,
)
from app.services.sync.storage import ObjectStorage

__all__ = [
    "MAX_FILES_PER_INTEGRATION",
    "MAX_FILES_PER_MANUAL_RUN",
    "MAX_INTEGRATIONS_PER_RUN",
    "IntegrationSyncResult",
    "ObjectStorage",
    "run_file_sync",
    "sync_integration",
    "sync_integrations",
]
