"""Full-tree indexer: seeds a walk and runs it to completion.

The walk itself is the sync runner with no folder budget, so a walk split
into many budgeted batches and a single unbounded walk end in the same
mirror state.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.drive.client import DriveClient
from app.services.drive_sync import BatchResult, SyncRunner
from app.services.mirror import MirrorRepository

logger = get_logger(__name__)


class DriveIndexer:
    """Seeded -> Walking -> Completed | Failed for one user's root."""

    def __init__(self, db: AsyncSession, client: DriveClient | None = None):
        self.db = db
        self.client = client
        self.mirror = MirrorRepository(db)

    async def seed(
        self,
        user_id: str,
        folder_id: str,
        folder_name: str,
        folder_path: str | None = None,
    ) -> None:
        """Write the root folder row and queue it as the only pending folder.

        Resets the cursor and stats; whatever the previous root was, its
        change feed means nothing for the new one.
        """
        await self.mirror.upsert_folder(
            user_id,
            folder_id,
            folder_name,
            parent_id=None,
            path=folder_path or folder_name,
        )
        await self.mirror.rearm_sync_state(user_id, folder_id)
        logger.info(
            "sync_seeded",
            user_id=user_id,
            folder_id=folder_id,
            folder_path=folder_path or folder_name,
        )

    async def index(self, user_id: str) -> BatchResult:
        """Walk the whole queue in one call.

        On failure the persisted queue keeps its contents, so the walk can be
        resumed with budgeted batches.
        """
        if self.client is None:
            raise ValueError("DriveIndexer.index needs a Drive client")
        runner = SyncRunner(self.db, self.client)
        result = await runner.run_batch(user_id, folder_budget=None)
        logger.info("full_index_completed", user_id=user_id, **result.to_dict())
        return result
