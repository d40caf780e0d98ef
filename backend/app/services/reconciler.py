"""Orphan reconciliation after a completed full pass.

Items the pass never re-observed are flagged ``missing`` rather than
deleted: a transient unshare or an outage must not destroy labels and
collections attached to them. Only the opt-in purge removes rows.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models import NotificationKind
from app.drive.exceptions import ScanIncompleteError, SyncNotInitializedError
from app.services.mirror import MirrorRepository
from app.utils.dates import as_utc, utcnow

logger = get_logger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation."""

    orphaned: int
    sync_id: str
    notification_id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PurgeResult:
    """Outcome of an orphan purge."""

    warned: int = 0
    deleted: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class Reconciler:
    """Flags items a completed pass did not see, and purges old orphans."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.mirror = MirrorRepository(db)

    async def finalize(self, user_id: str) -> ReconcileResult:
        """Orphan every active item the last completed pass did not observe.

        Raises:
            SyncNotInitializedError: If no folder was ever armed.
            ScanIncompleteError: If the pass since the last arm has not
                drained its queue.
        """
        state = await self.mirror.get_sync_state(user_id, fresh=True)
        if state is None or not state.root_folder_id:
            raise SyncNotInitializedError()

        scan_started_at = as_utc(state.scan_started_at)
        last_full_scan_at = as_utc(state.last_full_scan_at)
        if (
            not state.is_fully_indexed
            or scan_started_at is None
            or last_full_scan_at is None
            or last_full_scan_at < scan_started_at
        ):
            logger.info(
                "reconcile_skipped_scan_incomplete",
                user_id=user_id,
                queued=len(state.pending_folders),
                status=state.status.value,
            )
            raise ScanIncompleteError()

        now = utcnow()
        sync_id = str(uuid.uuid4())
        orphaned = await self.mirror.mark_items_missing(user_id, scan_started_at, now)

        result = ReconcileResult(orphaned=orphaned, sync_id=sync_id)
        if orphaned:
            notification = await self.mirror.add_notification(user_id, orphaned, sync_id)
            result.notification_id = notification.id

        await self.mirror.update_sync_state(state, last_reconciled_at=now)

        logger.info("reconcile_completed", user_id=user_id, **result.to_dict())
        return result

    async def purge_expired_orphans(self, user_id: str) -> PurgeResult:
        """Delete orphans past the user's retention, warn about those close to it.

        Does nothing unless the user enabled auto-deletion.
        """
        sync_settings = await self.mirror.get_sync_settings(user_id)
        if sync_settings is None or not sync_settings.auto_delete_enabled:
            return PurgeResult()

        now = utcnow()
        retention_days = sync_settings.auto_delete_orphans_days
        delete_before = now - timedelta(days=retention_days)
        warn_before = now - timedelta(
            days=max(retention_days - settings.orphan_warning_days, 0)
        )

        expired = await self.mirror.find_orphans_missing_since(user_id, delete_before)
        deleted = await self.mirror.delete_items(user_id, [item.id for item in expired])

        expiring = await self.mirror.find_orphans_missing_since(user_id, warn_before)
        result = PurgeResult(warned=len(expiring), deleted=deleted)
        if expiring:
            await self.mirror.add_notification(
                user_id,
                len(expiring),
                sync_id=f"purge-{now.date().isoformat()}",
                kind=NotificationKind.ORPHANS_EXPIRING,
            )

        logger.info(
            "orphans_purged",
            user_id=user_id,
            retention_days=retention_days,
            **result.to_dict(),
        )
        return result
