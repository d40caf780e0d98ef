"""Mirror repository: the local relational copy of a user's Drive subtree.

All writes are idempotent upserts keyed on ``(user_id, remote id)``. The
repository flushes but never commits; transaction boundaries belong to the
sync services that call it.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models import (
    DriveFolder,
    DriveItem,
    ItemStatus,
    MediaKind,
    NotificationKind,
    OrphanNotification,
    OriginStatus,
    SyncSettings,
    SyncState,
    SyncStatus,
)
from app.drive.client import FileInfo
from app.drive.exceptions import RootMismatchError, SyncNotInitializedError

logger = get_logger(__name__)

PATH_SEPARATOR = " / "

# EXIF style timestamp Drive reports in imageMediaMetadata.time
EXIF_TIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def join_path(parent_path: str | None, name: str) -> str:
    """Build a display path ``"<parent path> / <name>"``."""
    if not parent_path:
        return name
    return f"{parent_path}{PATH_SEPARATOR}{name}"


def media_kind_for(mime_type: str | None) -> MediaKind | None:
    if not mime_type:
        return None
    if mime_type.startswith("image/"):
        return MediaKind.PHOTO
    if mime_type.startswith("video/"):
        return MediaKind.VIDEO
    return None


def _parse_taken_at(value: str | None) -> datetime | None:
    if not value:
        return None
    for parse in (
        lambda v: datetime.strptime(v, EXIF_TIME_FORMAT),
        lambda v: datetime.fromisoformat(v.replace("Z", "+00:00")),
    ):
        try:
            parsed = parse(value)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def item_values(file: FileInfo, parent: DriveFolder | None) -> dict[str, Any]:
    """Column values for a DriveItem derived from a Drive file.

    ``parent`` is the mirrored folder of the file's first parent, if known.
    """
    image = file.image_metadata or {}
    video = file.video_metadata or {}

    return {
        "name": file.name,
        "mime_type": file.mime_type or None,
        "size": file.size,
        "md5_checksum": file.md5_checksum,
        "created_time": file.created_time,
        "modified_time": file.modified_time,
        "parents": file.parents,
        "trashed": file.trashed,
        "parent_id": file.parent_id,
        "origin_folder_name": parent.name if parent else None,
        "path_cached": join_path(parent.path_cached, file.name) if parent else None,
        "media_kind": media_kind_for(file.mime_type),
        "width": _int_or_none(image.get("width") or video.get("width")),
        "height": _int_or_none(image.get("height") or video.get("height")),
        "duration_ms": _int_or_none(video.get("durationMillis")),
        "taken_at": _parse_taken_at(image.get("time") or video.get("creationTime")),
    }


@dataclass
class ItemUpsert:
    """Outcome of writing one item."""

    item: DriveItem
    created: bool
    reactivated: bool


class MirrorRepository:
    """Reads and writes the mirror tables for the sync services."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========== Settings & state ==========

    async def get_sync_settings(self, user_id: str) -> SyncSettings | None:
        result = await self.db.execute(
            select(SyncSettings).where(SyncSettings.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def save_sync_settings(
        self,
        user_id: str,
        folder_id: str,
        folder_name: str,
        folder_path: str | None = None,
    ) -> SyncSettings:
        sync_settings = await self.get_sync_settings(user_id)
        if sync_settings is None:
            sync_settings = SyncSettings(user_id=user_id)
            self.db.add(sync_settings)
        sync_settings.drive_folder_id = folder_id
        sync_settings.drive_folder_name = folder_name
        sync_settings.drive_folder_path = folder_path or folder_name
        await self.db.flush()
        return sync_settings

    async def get_sync_state(self, user_id: str, fresh: bool = False) -> SyncState | None:
        """Load the user's sync state.

        ``fresh`` bypasses the identity map so values written by a
        concurrent session (or a core UPDATE) are visible.
        """
        query = select(SyncState).where(SyncState.user_id == user_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_verified_sync_state(self, user_id: str) -> SyncState:
        """Load the state and check it still matches the selected folder.

        Raises:
            SyncNotInitializedError: If no folder was ever armed.
            RootMismatchError: If the selection changed since arming.
        """
        state = await self.get_sync_state(user_id, fresh=True)
        if state is None or not state.root_folder_id:
            raise SyncNotInitializedError()

        sync_settings = await self.get_sync_settings(user_id)
        settings_root = sync_settings.drive_folder_id if sync_settings else None
        if settings_root != state.root_folder_id:
            logger.warning(
                "sync_root_mismatch",
                user_id=user_id,
                state_root=state.root_folder_id,
                settings_root=settings_root,
            )
            raise RootMismatchError(state.root_folder_id, settings_root)
        return state

    async def get_or_create_sync_state(self, user_id: str) -> SyncState:
        state = await self.get_sync_state(user_id)
        if state is None:
            state = SyncState(
                user_id=user_id,
                status=SyncStatus.IDLE,
                pending_folders_json="[]",
                stats_json="{}",
                version=0,
            )
            self.db.add(state)
            await self.db.flush()
        return state

    async def claim_batch(self, state: SyncState) -> str | None:
        """Take the user's batch lease.

        The lease is free when no batch holds it or the holder's lease is
        older than ``batch_lease_seconds``.

        Returns:
            The new batch ID, or None if a live batch holds the lease.
        """
        now = datetime.now(timezone.utc)
        stale_before = now - timedelta(seconds=settings.batch_lease_seconds)
        batch_id = str(uuid.uuid4())

        result = await self.db.execute(
            update(SyncState)
            .where(
                SyncState.user_id == state.user_id,
                SyncState.version == state.version,
                or_(
                    SyncState.active_batch_id.is_(None),
                    SyncState.batch_started_at.is_(None),
                    SyncState.batch_started_at < stale_before,
                ),
            )
            .values(
                active_batch_id=batch_id,
                batch_started_at=now,
                version=state.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return batch_id

    async def finish_batch(
        self,
        user_id: str,
        batch_id: str,
        expected_version: int,
        **values: Any,
    ) -> None:
        """Write a batch's outcome and release the lease in one statement.

        Raises:
            RootMismatchError: If the state was re-armed or the lease was
                taken over while the batch ran.
        """
        values.update(
            active_batch_id=None,
            batch_started_at=None,
            version=expected_version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        result = await self.db.execute(
            update(SyncState)
            .where(
                SyncState.user_id == user_id,
                SyncState.version == expected_version,
                SyncState.active_batch_id == batch_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RootMismatchError(
                message="Sync state changed while the batch was running, re-arm the sync"
            )

    async def rearm_sync_state(self, user_id: str, root_folder_id: str) -> None:
        """Reset the state to a fresh walk of ``root_folder_id``.

        Unconditional: bumps ``version`` so any batch still running against
        the previous root loses its compare-and-swap.
        """
        await self.get_or_create_sync_state(user_id)
        now = datetime.now(timezone.utc)
        await self.db.execute(
            update(SyncState)
            .where(SyncState.user_id == user_id)
            .values(
                root_folder_id=root_folder_id,
                pending_folders_json=json.dumps([root_folder_id]),
                status=SyncStatus.IDLE,
                last_error=None,
                change_cursor=None,
                stats_json="{}",
                scan_started_at=now,
                last_full_scan_at=None,
                active_batch_id=None,
                batch_started_at=None,
                version=SyncState.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    async def update_sync_state(self, state: SyncState, **values: Any) -> None:
        """Compare-and-swap write of state fields outside a batch.

        Raises:
            RootMismatchError: If the state changed since ``state`` was read.
        """
        values.update(
            version=state.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        result = await self.db.execute(
            update(SyncState)
            .where(
                SyncState.user_id == state.user_id,
                SyncState.version == state.version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RootMismatchError(
                message="Sync state changed concurrently, re-arm the sync"
            )

    async def mark_sync_error(self, user_id: str, error: str) -> None:
        """Move the state to ``error`` and drop any lease."""
        await self.db.execute(
            update(SyncState)
            .where(SyncState.user_id == user_id)
            .values(
                status=SyncStatus.ERROR,
                last_error=error,
                active_batch_id=None,
                batch_started_at=None,
                version=SyncState.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )

    # ========== Folders ==========

    async def get_folder(self, user_id: str, folder_id: str) -> DriveFolder | None:
        result = await self.db.execute(
            select(DriveFolder).where(
                DriveFolder.user_id == user_id,
                DriveFolder.folder_id == folder_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_folder(
        self,
        user_id: str,
        folder_id: str,
        name: str,
        parent_id: str | None,
        path: str | None,
    ) -> DriveFolder:
        folder = await self.get_folder(user_id, folder_id)
        if folder is None:
            folder = DriveFolder(user_id=user_id, folder_id=folder_id, name=name)
            self.db.add(folder)
        folder.name = name
        folder.parent_id = parent_id
        folder.path_cached = path
        folder.trashed = False
        await self.db.flush()
        return folder

    async def is_under_root(
        self, user_id: str, folder_id: str | None, root_folder_id: str
    ) -> bool:
        """Follow cached parents from ``folder_id`` up to the selected root.

        Folder rows left over from a previous root, or cut off by a trashed
        ancestor, never reach it.
        """
        seen: set[str] = set()
        while folder_id and folder_id not in seen:
            if folder_id == root_folder_id:
                return True
            seen.add(folder_id)
            folder = await self.get_folder(user_id, folder_id)
            if folder is None or folder.trashed:
                return False
            folder_id = folder.parent_id
        return False

    async def _subtree_folder_ids(self, user_id: str, folder_id: str) -> list[str]:
        folder_ids = [folder_id]
        frontier = [folder_id]
        while frontier:
            result = await self.db.execute(
                select(DriveFolder.folder_id).where(
                    DriveFolder.user_id == user_id,
                    DriveFolder.parent_id.in_(list(frontier)),
                )
            )
            frontier = [f for f in result.scalars() if f not in folder_ids]
            folder_ids.extend(frontier)
        return folder_ids

    async def detach_folder(self, user_id: str, folder_id: str, now: datetime) -> int:
        """Flag a folder that left the root and orphan the items below it.

        Returns:
            Number of items marked missing.
        """
        folder = await self.get_folder(user_id, folder_id)
        if folder is None:
            return 0
        folder.trashed = True
        await self.db.flush()

        folder_ids = await self._subtree_folder_ids(user_id, folder_id)
        result = await self.db.execute(
            update(DriveItem)
            .where(
                DriveItem.user_id == user_id,
                DriveItem.parent_id.in_(folder_ids),
                DriveItem.status == ItemStatus.ACTIVE,
            )
            .values(
                status=ItemStatus.MISSING,
                origin_status=OriginStatus.MISSING,
                origin_missing_since=now,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def refresh_subtree_paths(self, user_id: str, folder: DriveFolder) -> int:
        """Re-derive cached paths below ``folder`` after a rename or move.

        Returns:
            Number of items whose location was rewritten.
        """
        updated = 0
        seen = {folder.folder_id}
        frontier = {folder.folder_id: folder}
        while frontier:
            items = await self.db.execute(
                select(DriveItem).where(
                    DriveItem.user_id == user_id,
                    DriveItem.parent_id.in_(list(frontier)),
                    DriveItem.origin_status == OriginStatus.ACTIVE,
                )
            )
            for item in items.scalars():
                parent = frontier[item.parent_id]
                item.path_cached = join_path(parent.path_cached, item.name)
                item.origin_folder_name = parent.name
                updated += 1

            children = await self.db.execute(
                select(DriveFolder).where(
                    DriveFolder.user_id == user_id,
                    DriveFolder.parent_id.in_(list(frontier)),
                )
            )
            next_frontier = {}
            for child in children.scalars():
                if child.folder_id in seen:
                    continue
                seen.add(child.folder_id)
                child.path_cached = join_path(frontier[child.parent_id].path_cached, child.name)
                next_frontier[child.folder_id] = child
            frontier = next_frontier

        await self.db.flush()
        return updated

    # ========== Items ==========

    async def get_item(self, user_id: str, file_id: str) -> DriveItem | None:
        result = await self.db.execute(
            select(DriveItem).where(
                DriveItem.user_id == user_id,
                DriveItem.file_id == file_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_item(
        self,
        user_id: str,
        file: FileInfo,
        parent: DriveFolder | None,
        seen_at: datetime,
    ) -> ItemUpsert:
        """Write a file as an active item.

        A previously missing item is reactivated. ``last_sync_seen_at`` is
        stamped too; reconciliation orphans items not observed since the
        scan started, whether a batch or the change feed observed them.
        """
        item = await self.get_item(user_id, file.id)
        created = item is None
        if created:
            item = DriveItem(user_id=user_id, file_id=file.id, name=file.name)
            self.db.add(item)

        reactivated = not created and (
            item.status != ItemStatus.ACTIVE or item.origin_status != OriginStatus.ACTIVE
        )

        values = item_values(file, parent)
        if parent is None and not created:
            # Keep the last known location for items under unmirrored parents
            values.pop("origin_folder_name")
            values.pop("path_cached")
        for key, value in values.items():
            setattr(item, key, value)
        item.status = ItemStatus.ACTIVE
        item.origin_status = OriginStatus.ACTIVE
        item.origin_missing_since = None
        item.last_seen_at = seen_at
        item.last_sync_seen_at = seen_at

        await self.db.flush()
        return ItemUpsert(item=item, created=created, reactivated=reactivated)

    async def mark_item_removed(self, user_id: str, file_id: str, now: datetime) -> bool:
        """The file disappeared from the user's view (removed change)."""
        item = await self.get_item(user_id, file_id)
        if item is None:
            return False
        item.status = ItemStatus.MISSING
        item.origin_status = OriginStatus.MISSING
        if item.origin_missing_since is None:
            item.origin_missing_since = now
        await self.db.flush()
        return True

    async def mark_item_trashed(self, user_id: str, file_id: str, now: datetime) -> bool:
        item = await self.get_item(user_id, file_id)
        if item is None:
            return False
        item.status = ItemStatus.DELETED
        item.trashed = True
        item.origin_status = OriginStatus.MISSING
        if item.origin_missing_since is None:
            item.origin_missing_since = now
        await self.db.flush()
        return True

    def _unobserved_filter(self, user_id: str, scan_started_at: datetime):
        return (
            DriveItem.user_id == user_id,
            DriveItem.origin_status == OriginStatus.ACTIVE,
            DriveItem.trashed.is_(False),
            or_(
                DriveItem.last_sync_seen_at.is_(None),
                DriveItem.last_sync_seen_at < scan_started_at,
            ),
        )

    async def mark_items_missing(
        self, user_id: str, scan_started_at: datetime, now: datetime
    ) -> int:
        """Orphan every unobserved item in one statement.

        Returns:
            Number of items marked.
        """
        result = await self.db.execute(
            update(DriveItem)
            .where(*self._unobserved_filter(user_id, scan_started_at))
            .values(
                status=ItemStatus.MISSING,
                origin_status=OriginStatus.MISSING,
                origin_missing_since=now,
                origin_folder_name=None,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def list_items(
        self,
        user_id: str,
        status: ItemStatus | None = None,
        origin_status: OriginStatus | None = None,
        limit: int | None = None,
    ) -> list[DriveItem]:
        query = select(DriveItem).where(DriveItem.user_id == user_id)
        if status is not None:
            query = query.where(DriveItem.status == status)
        if origin_status is not None:
            query = query.where(DriveItem.origin_status == origin_status)
        query = query.order_by(DriveItem.path_cached, DriveItem.file_id)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars())

    async def count_items(self, user_id: str) -> dict[str, int]:
        """Item counts per status plus a ``total`` key."""
        result = await self.db.execute(
            select(DriveItem.status, func.count())
            .where(DriveItem.user_id == user_id)
            .group_by(DriveItem.status)
        )
        counts = {status.value: 0 for status in ItemStatus}
        for status, count in result.all():
            counts[status.value] = count
        counts["total"] = sum(counts.values())
        return counts

    async def count_orphans(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(DriveItem)
            .where(
                DriveItem.user_id == user_id,
                DriveItem.origin_status == OriginStatus.MISSING,
            )
        )
        return result.scalar_one()

    async def find_orphans_missing_since(
        self, user_id: str, before: datetime
    ) -> list[DriveItem]:
        result = await self.db.execute(
            select(DriveItem).where(
                DriveItem.user_id == user_id,
                DriveItem.origin_status == OriginStatus.MISSING,
                DriveItem.origin_missing_since.is_not(None),
                DriveItem.origin_missing_since < before,
            )
        )
        return list(result.scalars())

    async def delete_items(self, user_id: str, item_ids: list[str]) -> int:
        if not item_ids:
            return 0
        result = await self.db.execute(
            delete(DriveItem)
            .where(DriveItem.user_id == user_id, DriveItem.id.in_(item_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ========== Notifications ==========

    async def add_notification(
        self,
        user_id: str,
        items_count: int,
        sync_id: str,
        kind: NotificationKind = NotificationKind.ORPHANS_DETECTED,
    ) -> OrphanNotification:
        notification = OrphanNotification(
            user_id=user_id,
            kind=kind,
            items_count=items_count,
            sync_id=sync_id,
            acknowledged=False,
        )
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def list_notifications(
        self, user_id: str, include_acknowledged: bool = False
    ) -> list[OrphanNotification]:
        query = select(OrphanNotification).where(OrphanNotification.user_id == user_id)
        if not include_acknowledged:
            query = query.where(OrphanNotification.acknowledged.is_(False))
        query = query.order_by(OrphanNotification.created_at.desc())
        result = await self.db.execute(query)
        return list(result.scalars())

    async def acknowledge_notification(
        self, user_id: str, notification_id: str
    ) -> OrphanNotification | None:
        result = await self.db.execute(
            select(OrphanNotification).where(
                OrphanNotification.user_id == user_id,
                OrphanNotification.id == notification_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            return None
        notification.acknowledged = True
        await self.db.flush()
        return notification

    async def list_auto_delete_users(self) -> list[SyncSettings]:
        result = await self.db.execute(
            select(SyncSettings).where(SyncSettings.auto_delete_enabled.is_(True))
        )
        return list(result.scalars())
