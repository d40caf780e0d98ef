"""Delta puller: applies the Drive change feed to the mirror.

The stored cursor only moves forward in the same transaction that applied
every change it covers. A pull that dies halfway leaves the old cursor in
place, and re-pulling replays the same changes through idempotent upserts.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.db.models import DriveFolder, DriveItem, ItemStatus
from app.drive.client import ChangeInfo, DriveClient
from app.drive.exceptions import BatchInProgressError, CursorInvalidError
from app.services.mirror import MirrorRepository, join_path

logger = get_logger(__name__)


class ChangeKind(str, enum.Enum):
    """How a single change affects the mirror."""

    ADD = "add"
    MODIFY = "modify"
    REMOVE = "remove"
    TRASH = "trash"
    MOVE_OUT = "move_out"
    FOLDER = "folder"
    IGNORE = "ignore"


@dataclass
class PullResult:
    """Outcome of one delta pull."""

    processed: int = 0
    added: int = 0
    modified: int = 0
    removed: int = 0
    new_cursor: str | None = None
    reset: bool = False
    initialized: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PeekResult:
    """Pending change counts, computed without applying anything."""

    total: int = 0
    additions: int = 0
    modifications: int = 0
    removals: int = 0
    cursor: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class DeltaPuller:
    """Pulls and applies Drive changes for one user."""

    def __init__(self, db: AsyncSession, client: DriveClient):
        self.db = db
        self.client = client
        self.mirror = MirrorRepository(db)

    async def _root_parent(
        self, user_id: str, parent_ids: list[str], root_folder_id: str
    ) -> DriveFolder | None:
        """The first of ``parent_ids`` that is mirrored under the selected root."""
        for parent_id in parent_ids:
            if await self.mirror.is_under_root(user_id, parent_id, root_folder_id):
                return await self.mirror.get_folder(user_id, parent_id)
        return None

    async def _classify(
        self, user_id: str, root_folder_id: str, change: ChangeInfo
    ) -> tuple[ChangeKind, DriveItem | DriveFolder | None, DriveFolder | None]:
        """Work out what a change means for the mirror.

        Returns:
            Tuple of (kind, existing row or None, in-root first parent or None).
        """
        item = await self.mirror.get_item(user_id, change.file_id)
        folder = None if item else await self.mirror.get_folder(user_id, change.file_id)
        existing = item or folder

        if change.removed or change.file is None:
            return (ChangeKind.REMOVE if existing else ChangeKind.IGNORE), existing, None

        file = change.file
        if file.trashed:
            return (ChangeKind.TRASH if existing else ChangeKind.IGNORE), existing, None

        if file.id == root_folder_id:
            return ChangeKind.FOLDER, existing, None

        parent = await self._root_parent(user_id, file.parents, root_folder_id)
        if parent is None:
            # Outside the selected root
            if existing is None:
                return ChangeKind.IGNORE, None, None
            if isinstance(existing, DriveItem) and existing.status != ItemStatus.ACTIVE:
                return ChangeKind.IGNORE, existing, None
            if isinstance(existing, DriveFolder) and existing.trashed:
                return ChangeKind.IGNORE, existing, None
            return ChangeKind.MOVE_OUT, existing, None

        if file.is_folder:
            return ChangeKind.FOLDER, existing, parent
        return (ChangeKind.MODIFY if existing else ChangeKind.ADD), existing, parent

    async def pull(self, user_id: str) -> PullResult:
        """Apply every change since the stored cursor.

        Raises:
            SyncNotInitializedError: If no folder was ever armed.
            RootMismatchError: If the selected folder changed.
            BatchInProgressError: If a sync batch holds the lease.
        """
        state = await self.mirror.get_verified_sync_state(user_id)
        cursor = state.change_cursor
        leased_version = state.version + 1
        now = datetime.now(timezone.utc)

        if not cursor:
            new_cursor = await self.client.get_change_cursor()
            await self.mirror.update_sync_state(
                state, change_cursor=new_cursor, last_changes_at=now
            )
            logger.info("change_cursor_initialized", user_id=user_id)
            return PullResult(new_cursor=new_cursor, initialized=True)

        batch_id = await self.mirror.claim_batch(state)
        if batch_id is None:
            raise BatchInProgressError()
        await self.db.commit()

        result = PullResult()
        try:
            result.new_cursor = await self._apply_feed(
                user_id, state.root_folder_id, cursor, result, now
            )
        except CursorInvalidError:
            # Throw away whatever the dead cursor produced, then start over from now
            await self.db.rollback()
            result = PullResult(reset=True)
            result.new_cursor = await self.client.get_change_cursor()
            logger.warning(
                "change_cursor_reset",
                user_id=user_id,
                message="Changes between the old and new cursor were not applied",
            )

        await self.mirror.finish_batch(
            user_id,
            batch_id,
            leased_version,
            change_cursor=result.new_cursor,
            last_changes_at=datetime.now(timezone.utc),
        )

        logger.info("changes_pulled", user_id=user_id, **result.to_dict())
        return result

    async def _apply_feed(
        self,
        user_id: str,
        root_folder_id: str,
        cursor: str,
        result: PullResult,
        now: datetime,
    ) -> str:
        """Apply all pages after ``cursor``; return the feed's new start token."""
        page_token = cursor
        while True:
            page = await self.client.list_changes(page_token)
            for change in page.changes:
                await self._apply_change(user_id, root_folder_id, change, result, now)
                result.processed += 1

            if page.new_start_page_token:
                return page.new_start_page_token
            if not page.next_page_token:
                return page_token
            page_token = page.next_page_token

    async def _apply_change(
        self,
        user_id: str,
        root_folder_id: str,
        change: ChangeInfo,
        result: PullResult,
        now: datetime,
    ) -> None:
        kind, existing, parent = await self._classify(user_id, root_folder_id, change)

        if kind in (ChangeKind.REMOVE, ChangeKind.MOVE_OUT):
            if isinstance(existing, DriveFolder):
                orphaned = await self.mirror.detach_folder(user_id, change.file_id, now)
                logger.info(
                    "folder_left_root",
                    user_id=user_id,
                    folder_id=change.file_id,
                    orphaned=orphaned,
                )
            else:
                await self.mirror.mark_item_removed(user_id, change.file_id, now)
            result.removed += 1
            if kind == ChangeKind.MOVE_OUT:
                logger.info("item_moved_out_of_root", user_id=user_id, file_id=change.file_id)

        elif kind == ChangeKind.TRASH:
            if isinstance(existing, DriveFolder):
                await self.mirror.detach_folder(user_id, change.file_id, now)
            else:
                await self.mirror.mark_item_trashed(user_id, change.file_id, now)
            result.removed += 1

        elif kind == ChangeKind.FOLDER:
            await self._apply_folder(user_id, root_folder_id, change, existing, parent, result, now)

        elif kind in (ChangeKind.ADD, ChangeKind.MODIFY):
            upsert = await self.mirror.upsert_item(user_id, change.file, parent, seen_at=now)
            if upsert.created:
                result.added += 1
            else:
                result.modified += 1
            if upsert.reactivated:
                logger.info(
                    "item_reactivated",
                    user_id=user_id,
                    file_id=change.file_id,
                    source="changes",
                )

    async def _apply_folder(
        self,
        user_id: str,
        root_folder_id: str,
        change: ChangeInfo,
        existing: DriveItem | DriveFolder | None,
        parent: DriveFolder | None,
        result: PullResult,
        now: datetime,
    ) -> None:
        file = change.file
        current = existing if isinstance(existing, DriveFolder) else None

        if parent is None:
            # The selected root: its display path was fixed when it was armed
            await self.mirror.upsert_folder(
                user_id,
                file.id,
                file.name,
                parent_id=current.parent_id if current else None,
                path=current.path_cached if current else file.name,
            )
            if current is not None:
                result.modified += 1
            return

        was_in_root = (
            current is not None
            and not current.trashed
            and await self.mirror.is_under_root(user_id, current.parent_id, root_folder_id)
        )
        old_path = current.path_cached if current else None

        folder = await self.mirror.upsert_folder(
            user_id,
            file.id,
            file.name,
            parent_id=parent.folder_id,
            path=join_path(parent.path_cached, file.name),
        )
        if existing is None:
            result.added += 1
        else:
            result.modified += 1

        if not was_in_root:
            # New to the mirror, or moved in from outside: nothing below it is known yet
            await self._expand_subtree(user_id, folder, result, now)
        elif folder.path_cached != old_path:
            updated = await self.mirror.refresh_subtree_paths(user_id, folder)
            logger.info(
                "folder_paths_refreshed",
                user_id=user_id,
                folder_id=folder.folder_id,
                items=updated,
            )

    async def _expand_subtree(
        self, user_id: str, folder: DriveFolder, result: PullResult, now: datetime
    ) -> None:
        """List a folder that just entered the root, and everything below it."""
        queue = deque([folder])
        while queue:
            current = queue.popleft()
            for child in await self.client.list_children(current.folder_id):
                if child.is_folder:
                    subfolder = await self.mirror.upsert_folder(
                        user_id,
                        child.id,
                        child.name,
                        parent_id=current.folder_id,
                        path=join_path(current.path_cached, child.name),
                    )
                    queue.append(subfolder)
                    continue

                upsert = await self.mirror.upsert_item(user_id, child, current, seen_at=now)
                if upsert.created:
                    result.added += 1
                else:
                    result.modified += 1

    async def peek(self, user_id: str) -> PeekResult:
        """Count pending changes without applying them or moving the cursor."""
        state = await self.mirror.get_sync_state(user_id, fresh=True)
        if state is None or not state.change_cursor:
            return PeekResult()

        root_folder_id = state.root_folder_id
        result = PeekResult(cursor=state.change_cursor)
        page_token = state.change_cursor
        while True:
            page = await self.client.list_changes(page_token)
            for change in page.changes:
                kind, existing, _parent = await self._classify(user_id, root_folder_id, change)
                if kind == ChangeKind.IGNORE:
                    continue
                result.total += 1
                if kind in (ChangeKind.REMOVE, ChangeKind.TRASH, ChangeKind.MOVE_OUT):
                    result.removals += 1
                elif kind == ChangeKind.ADD or (kind == ChangeKind.FOLDER and existing is None):
                    result.additions += 1
                else:
                    result.modifications += 1

            if page.new_start_page_token or not page.next_page_token:
                break
            page_token = page.next_page_token

        logger.debug("changes_peeked", user_id=user_id, **result.to_dict())
        return result
