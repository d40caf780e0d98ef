"""Incremental sync runner: budgeted breadth-first expansion of the mirror.

Each batch pops up to ``folder_budget`` folder IDs from the persisted queue,
lists every page of each, upserts what it finds and writes the remaining
queue back in a single compare-and-swap. A batch that fails leaves the
persisted queue as it was, so re-running it resumes the walk.
"""

from __future__ import annotations

import json
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models import SyncStatus
from app.drive.client import DriveClient
from app.drive.exceptions import BatchInProgressError
from app.services.mirror import MirrorRepository, join_path

logger = get_logger(__name__)

STAT_KEYS = ("processed_folders", "updated_items", "found_folders")


@dataclass
class BatchResult:
    """Outcome of one sync batch."""

    done: bool
    processed_folders: int = 0
    updated_items: int = 0
    found_folders: int = 0
    queued: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class SyncRunner:
    """Runs budgeted sync batches for one user against one Drive client."""

    def __init__(self, db: AsyncSession, client: DriveClient):
        self.db = db
        self.client = client
        self.mirror = MirrorRepository(db)

    async def run_batch(self, user_id: str, folder_budget: int | None) -> BatchResult:
        """Expand up to ``folder_budget`` queued folders.

        ``None`` means no budget: the walk runs until the queue is drained.

        Raises:
            SyncNotInitializedError: If no folder was ever armed.
            RootMismatchError: If the selected folder changed, before or
                during the batch.
            BatchInProgressError: If another batch holds the lease.
        """
        state = await self.mirror.get_verified_sync_state(user_id)
        root_folder_id = state.root_folder_id
        queue = deque(state.pending_folders)
        stats = state.stats
        change_cursor = state.change_cursor
        last_full_scan_at = state.last_full_scan_at
        leased_version = state.version + 1

        batch_id = await self.mirror.claim_batch(state)
        if batch_id is None:
            raise BatchInProgressError()
        # Make the lease visible to other workers before the slow part
        await self.db.commit()

        result = BatchResult(done=False)
        now = datetime.now(timezone.utc)

        logger.info(
            "sync_batch_started",
            user_id=user_id,
            batch_id=batch_id,
            queued=len(queue),
            folder_budget=folder_budget,
        )

        while queue and (folder_budget is None or result.processed_folders < folder_budget):
            folder_id = queue.popleft()
            await self._expand_folder(user_id, root_folder_id, folder_id, queue, result, now)
            result.processed_folders += 1

        result.done = not queue
        result.queued = len(queue)

        for key in STAT_KEYS:
            stats[key] = stats.get(key, 0) + getattr(result, key)

        values = {
            "pending_folders_json": json.dumps(list(queue)),
            "stats_json": json.dumps(stats),
            "status": SyncStatus.RUNNING if queue else SyncStatus.IDLE,
            "last_error": None,
        }
        if result.done and (result.processed_folders or last_full_scan_at is None):
            values["last_full_scan_at"] = datetime.now(timezone.utc)
            if not change_cursor:
                # Changes before this point are covered by the walk just finished
                values["change_cursor"] = await self.client.get_change_cursor()
                logger.info("change_cursor_initialized", user_id=user_id)

        await self.mirror.finish_batch(user_id, batch_id, leased_version, **values)

        logger.info(
            "sync_batch_completed",
            user_id=user_id,
            batch_id=batch_id,
            **result.to_dict(),
        )
        return result

    async def _expand_folder(
        self,
        user_id: str,
        root_folder_id: str,
        folder_id: str,
        queue: deque[str],
        result: BatchResult,
        now: datetime,
    ) -> None:
        parent = await self.mirror.get_folder(user_id, folder_id)
        parent_path = parent.path_cached if parent else None

        children = await self.client.list_children(folder_id)

        for child in children:
            if child.is_folder:
                await self.mirror.upsert_folder(
                    user_id,
                    child.id,
                    child.name,
                    parent_id=folder_id,
                    path=join_path(parent_path, child.name),
                )
                queue.append(child.id)
                result.found_folders += 1
                continue

            origin = parent
            if child.parent_id and child.parent_id != folder_id:
                # Listed under a second parent; location follows the first one
                first = await self.mirror.get_folder(user_id, child.parent_id)
                if first is not None and await self.mirror.is_under_root(
                    user_id, first.folder_id, root_folder_id
                ):
                    origin = first

            upsert = await self.mirror.upsert_item(
                user_id, child, origin, seen_at=now
            )
            result.updated_items += 1
            if upsert.reactivated:
                logger.info(
                    "item_reactivated",
                    user_id=user_id,
                    file_id=child.id,
                    source="full_scan",
                )

        logger.debug(
            "sync_folder_expanded",
            user_id=user_id,
            folder_id=folder_id,
            children=len(children),
        )
