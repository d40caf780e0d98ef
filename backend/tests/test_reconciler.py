"""Tests for orphan reconciliation and retention."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.db.models import ItemStatus, NotificationKind, OriginStatus
from app.drive.exceptions import ScanIncompleteError, SyncNotInitializedError
from app.services.drive_indexer import DriveIndexer
from app.services.drive_sync import SyncRunner
from app.services.mirror import MirrorRepository
from app.services.reconciler import Reconciler

from conftest import USER_ID


async def full_pass(session, drive) -> None:
    """Arm the photo root and walk it to completion."""
    await MirrorRepository(session).save_sync_settings(USER_ID, "F", "Photos")
    indexer = DriveIndexer(session, drive)
    await indexer.seed(USER_ID, "F", "Photos")
    await session.commit()
    await indexer.index(USER_ID)
    await session.commit()


async def finalize(session):
    result = await Reconciler(session).finalize(USER_ID)
    await session.commit()
    return result


class TestFinalize:
    """Tests for Reconciler.finalize."""

    async def test_not_armed(self, db_session):
        with pytest.raises(SyncNotInitializedError):
            await Reconciler(db_session).finalize(USER_ID)

    async def test_refuses_incomplete_pass(self, db_session, photo_tree):
        await MirrorRepository(db_session).save_sync_settings(USER_ID, "F", "Photos")
        await DriveIndexer(db_session).seed(USER_ID, "F", "Photos")
        await db_session.commit()
        await SyncRunner(db_session, photo_tree).run_batch(USER_ID, 1)
        await db_session.commit()

        with pytest.raises(ScanIncompleteError):
            await Reconciler(db_session).finalize(USER_ID)

    async def test_refuses_after_rearm(self, db_session, photo_tree):
        await full_pass(db_session, photo_tree)
        await DriveIndexer(db_session).seed(USER_ID, "F", "Photos")
        await db_session.commit()

        with pytest.raises(ScanIncompleteError):
            await Reconciler(db_session).finalize(USER_ID)

    async def test_clean_pass_orphans_nothing(self, db_session, photo_tree):
        await full_pass(db_session, photo_tree)

        result = await finalize(db_session)

        assert result.orphaned == 0
        assert result.notification_id is None
        mirror = MirrorRepository(db_session)
        assert await mirror.list_notifications(USER_ID) == []
        state = await mirror.get_sync_state(USER_ID, fresh=True)
        assert state.last_reconciled_at is not None

    async def test_unobserved_item_becomes_missing(self, db_session, photo_tree):
        await full_pass(db_session, photo_tree)
        mirror = MirrorRepository(db_session)
        before = await mirror.get_item(USER_ID, "x")
        md5, name = before.md5_checksum, before.name

        # Gone from the tree without a trace in the change feed
        del photo_tree.files["x"]
        photo_tree.add_file("y", "y.jpg", parent="A")
        await full_pass(db_session, photo_tree)

        result = await finalize(db_session)

        assert result.orphaned == 1
        assert result.notification_id is not None
        item = await mirror.get_item(USER_ID, "x")
        assert item.status == ItemStatus.MISSING
        assert item.origin_status == OriginStatus.MISSING
        assert item.origin_missing_since is not None
        assert item.origin_folder_name is None
        # Everything else survives
        assert (item.name, item.md5_checksum) == (name, md5)
        assert (await mirror.get_item(USER_ID, "y")).status == ItemStatus.ACTIVE

        notifications = await mirror.list_notifications(USER_ID)
        assert len(notifications) == 1
        assert notifications[0].items_count == 1
        assert notifications[0].kind == NotificationKind.ORPHANS_DETECTED
        assert notifications[0].sync_id == result.sync_id

    async def test_second_finalize_finds_nothing_new(self, db_session, photo_tree):
        await full_pass(db_session, photo_tree)
        del photo_tree.files["x"]
        await full_pass(db_session, photo_tree)
        await finalize(db_session)

        result = await finalize(db_session)

        assert result.orphaned == 0
        assert await MirrorRepository(db_session).count_orphans(USER_ID) == 1


class TestPurge:
    """Tests for Reconciler.purge_expired_orphans."""

    @pytest.fixture
    async def orphans(self, db_session, photo_tree):
        for name in ("old", "aging", "recent"):
            photo_tree.add_file(name, f"{name}.jpg", parent="A")
        await full_pass(db_session, photo_tree)

        mirror = MirrorRepository(db_session)
        now = datetime.now(timezone.utc)
        await mirror.mark_item_removed(USER_ID, "old", now - timedelta(days=40))
        await mirror.mark_item_removed(USER_ID, "aging", now - timedelta(days=27))
        await mirror.mark_item_removed(USER_ID, "recent", now - timedelta(days=1))
        await db_session.commit()
        return mirror

    async def test_disabled_by_default(self, db_session, orphans):
        result = await Reconciler(db_session).purge_expired_orphans(USER_ID)

        assert (result.warned, result.deleted) == (0, 0)
        assert await orphans.count_orphans(USER_ID) == 3

    async def test_deletes_expired_and_warns_about_expiring(self, db_session, orphans):
        sync_settings = await orphans.get_sync_settings(USER_ID)
        sync_settings.auto_delete_enabled = True
        sync_settings.auto_delete_orphans_days = 30
        await db_session.commit()

        result = await Reconciler(db_session).purge_expired_orphans(USER_ID)
        await db_session.commit()

        assert result.deleted == 1
        assert result.warned == 1
        assert await orphans.get_item(USER_ID, "old") is None
        assert await orphans.get_item(USER_ID, "aging") is not None
        assert await orphans.get_item(USER_ID, "x") is not None

        notifications = await orphans.list_notifications(USER_ID)
        assert [n.kind for n in notifications] == [NotificationKind.ORPHANS_EXPIRING]
        assert notifications[0].items_count == 1
