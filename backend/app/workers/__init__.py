"""Background workers for DriveSync."""

from app.workers.background_sync import (
    BackgroundSyncResult,
    is_background_sync_running,
    purge_all_orphans,
    run_background_sync,
    start_background_sync,
)

__all__ = [
    "BackgroundSyncResult",
    "is_background_sync_running",
    "purge_all_orphans",
    "run_background_sync",
    "start_background_sync",
]
