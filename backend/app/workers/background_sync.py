"""Background sync loop: batches until the walk is done, then reconciles."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.db.session import async_session_maker
from app.drive.client import GoogleDriveClient
from app.drive.exceptions import BatchInProgressError, DriveSyncError
from app.services.sync_engine import ClientFactory, SyncEngine

logger = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

# Track running loops so the same user never gets two
_running: dict[str, asyncio.Task] = {}


@dataclass
class BackgroundSyncResult:
    """Summary of one background run."""

    batches: int = 0
    processed_folders: int = 0
    updated_items: int = 0
    completed: bool = False
    orphaned: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


async def run_background_sync(
    user_id: str,
    *,
    folder_budget: int | None = None,
    batch_delay: float | None = None,
    session_factory: SessionFactory = async_session_maker,
    client_factory: ClientFactory = GoogleDriveClient,
    max_batches: int | None = None,
) -> BackgroundSyncResult:
    """Drive a user's walk to completion, then run reconciliation.

    Each batch gets its own session so a long walk never holds a
    transaction open between batches. The loop stops on the first failure;
    the engine has already moved the state to ``error`` by then.

    Args:
        user_id: User to sync.
        folder_budget: Folders per batch (defaults to the configured budget).
        batch_delay: Seconds between batches (defaults to the configured delay).
        session_factory: Creates a session per batch.
        client_factory: Builds a Drive client from an access token.
        max_batches: Optional safety cap on the number of batches.

    Returns:
        Summary of the run.
    """
    delay = settings.sync_batch_delay if batch_delay is None else batch_delay
    result = BackgroundSyncResult()

    logger.info("background_sync_started", user_id=user_id, folder_budget=folder_budget)

    while max_batches is None or result.batches < max_batches:
        async with session_factory() as db:
            engine = SyncEngine(db, client_factory=client_factory)
            try:
                batch = await engine.run_sync_batch(user_id, folder_budget)
            except BatchInProgressError:
                # Another worker holds the lease; wait for it
                logger.info("background_sync_waiting_for_lease", user_id=user_id)
                await asyncio.sleep(delay)
                continue
            except DriveSyncError as e:
                result.error = e.message
                logger.error(
                    "background_sync_failed",
                    user_id=user_id,
                    code=e.code,
                    error=e.message,
                    batches=result.batches,
                )
                return result

        result.batches += 1
        result.processed_folders += batch.processed_folders
        result.updated_items += batch.updated_items

        if batch.done:
            result.completed = True
            break

        await asyncio.sleep(delay)

    if not result.completed:
        logger.warning("background_sync_batch_cap_reached", user_id=user_id, batches=result.batches)
        return result

    async with session_factory() as db:
        try:
            reconcile = await SyncEngine(db, client_factory=client_factory).finalize_sync(user_id)
        except DriveSyncError as e:
            result.error = e.message
            logger.error("background_finalize_failed", user_id=user_id, code=e.code, error=e.message)
            return result
    result.orphaned = reconcile.orphaned

    logger.info("background_sync_completed", user_id=user_id, **result.to_dict())
    return result


def start_background_sync(
    user_id: str,
    folder_budget: int | None = None,
    **kwargs,
) -> bool:
    """Schedule a background run on the current event loop.

    Returns:
        False if a run for this user is already in flight.
    """
    task = _running.get(user_id)
    if task is not None and not task.done():
        return False

    task = asyncio.create_task(
        run_background_sync(user_id, folder_budget=folder_budget, **kwargs),
        name=f"background-sync-{user_id}",
    )
    _running[user_id] = task

    def _forget(finished: asyncio.Task) -> None:
        if _running.get(user_id) is finished:
            del _running[user_id]

    task.add_done_callback(_forget)
    return True


def is_background_sync_running(user_id: str) -> bool:
    task = _running.get(user_id)
    return task is not None and not task.done()


async def purge_all_orphans(
    session_factory: SessionFactory = async_session_maker,
) -> int:
    """Apply orphan retention for every user who enabled auto-deletion.

    Returns:
        Total number of items deleted.
    """
    async with session_factory() as db:
        engine = SyncEngine(db)
        users = [s.user_id for s in await engine.mirror.list_auto_delete_users()]
        deleted = 0
        for user_id in users:
            purge = await engine.purge_orphans(user_id)
            deleted += purge.deleted
    logger.info("orphan_purge_sweep_completed", users=len(users), deleted=deleted)
    return deleted
