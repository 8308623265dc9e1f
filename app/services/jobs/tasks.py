"""
Dramatiq Background Tasks
Runs the file sync pass outside the request cycle
"""
import asyncio
import logging
from typing import Any, Dict

import dramatiq

from app.services.jobs.broker import broker  # noqa: F401  (registers the broker before actors)
from app.services.sync.orchestration.file_sync import (
    MAX_FILES_PER_INTEGRATION,
    MAX_INTEGRATIONS_PER_RUN,
    run_file_sync,
)

logger = logging.getLogger(__name__)


def get_sync_dependencies():
    """
    Create fresh clients for a worker process.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    from app.core.dependencies import create_http_client, create_supabase_client
    from app.services.sync.storage import ObjectStorage

    return create_http_client(), create_supabase_client(), ObjectStorage.from_settings()


async def _run_file_sync_with_cleanup(max_integrations: int, max_files: int) -> Dict[str, Any]:
    http_client, supabase, storage = get_sync_dependencies()
    try:
        return await run_file_sync(
            http_client,
            supabase,
            storage,
            max_integrations=max_integrations,
            max_files=max_files
        )
    finally:
        # Cleanup HTTP client in the same event loop
        await http_client.aclose()


@dramatiq.actor(max_retries=0, queue_name="file_sync")
def sync_files_task(
    max_integrations: int = MAX_INTEGRATIONS_PER_RUN,
    max_files: int = MAX_FILES_PER_INTEGRATION
):
    """
    Background job for one file sync pass.

    Args:
        max_integrations: Integrations to process this pass
        max_files: Successful uploads per integration
    """
    logger.info(f"🚀 Starting background file sync (max {max_integrations} integrations)")

    summary = asyncio.run(_run_file_sync_with_cleanup(max_integrations, max_files))

    errors = [r for r in summary["results"] if r["status"] == "error"]
    logger.info(f"✅ Background file sync complete: {summary['processed']} processed, {len(errors)} errors")
    return summary
