"""Tests for the mirror repository."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.db.models import ItemStatus, MediaKind, OriginStatus, SyncStatus
from app.drive.client import FileInfo
from app.drive.exceptions import RootMismatchError, SyncNotInitializedError
from app.services.mirror import MirrorRepository, item_values, join_path, media_kind_for

from conftest import USER_ID

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mirror(db_session) -> MirrorRepository:
    return MirrorRepository(db_session)


def photo(file_id: str = "x", parent: str = "F", **fields) -> FileInfo:
    return FileInfo(
        id=file_id,
        name=fields.pop("name", f"{file_id}.jpg"),
        mime_type=fields.pop("mime_type", "image/jpeg"),
        parents=[parent],
        **fields,
    )


class TestHelpers:
    """Tests for the module level helpers."""

    def test_join_path(self):
        assert join_path(None, "Photos") == "Photos"
        assert join_path("Photos", "Summer") == "Photos / Summer"

    @pytest.mark.parametrize(
        "mime_type,expected",
        [
            ("image/heic", MediaKind.PHOTO),
            ("video/mp4", MediaKind.VIDEO),
            ("application/pdf", None),
            (None, None),
        ],
    )
    def test_media_kind_for(self, mime_type, expected):
        assert media_kind_for(mime_type) == expected

    def test_item_values_reads_media_metadata(self):
        video = photo(
            "v",
            mime_type="video/mp4",
            video_metadata={
                "width": 1920,
                "height": 1080,
                "durationMillis": "61500",
                "creationTime": "2024-04-30T08:00:00Z",
            },
        )

        values = item_values(video, parent=None)

        assert values["media_kind"] == MediaKind.VIDEO
        assert values["width"] == 1920
        assert values["duration_ms"] == 61500
        assert values["taken_at"] == datetime(2024, 4, 30, 8, 0, tzinfo=timezone.utc)
        assert values["path_cached"] is None

    def test_item_values_exif_time(self):
        values = item_values(
            photo(image_metadata={"time": "2023:12:24 18:30:05", "width": "800"}),
            parent=None,
        )
        assert values["taken_at"] == datetime(2023, 12, 24, 18, 30, 5, tzinfo=timezone.utc)
        assert values["width"] == 800

    def test_item_values_ignores_unparseable_time(self):
        values = item_values(photo(image_metadata={"time": "sometime"}), parent=None)
        assert values["taken_at"] is None


class TestSyncState:
    """Tests for state reads and compare-and-swap writes."""

    async def test_verified_state_requires_arming(self, mirror):
        with pytest.raises(SyncNotInitializedError):
            await mirror.get_verified_sync_state(USER_ID)

    async def test_verified_state_detects_root_change(self, mirror, db_session):
        await mirror.save_sync_settings(USER_ID, "F", "Photos")
        await mirror.rearm_sync_state(USER_ID, "F")
        await mirror.save_sync_settings(USER_ID, "G", "Other")
        await db_session.commit()

        with pytest.raises(RootMismatchError) as exc_info:
            await mirror.get_verified_sync_state(USER_ID)
        assert exc_info.value.state_root == "F"
        assert exc_info.value.settings_root == "G"

    async def test_rearm_resets_walk(self, mirror, db_session):
        await mirror.save_sync_settings(USER_ID, "F", "Photos")
        await mirror.rearm_sync_state(USER_ID, "F")
        state = await mirror.get_sync_state(USER_ID, fresh=True)
        await mirror.update_sync_state(
            state, change_cursor="7", pending_folders_json="[]", status=SyncStatus.ERROR
        )

        await mirror.rearm_sync_state(USER_ID, "F")
        state = await mirror.get_sync_state(USER_ID, fresh=True)

        assert state.pending_folders == ["F"]
        assert state.change_cursor is None
        assert state.status == SyncStatus.IDLE
        assert state.scan_started_at is not None
        assert state.version == 3

    async def test_update_with_stale_version_fails(self, mirror, db_session):
        await mirror.save_sync_settings(USER_ID, "F", "Photos")
        await mirror.rearm_sync_state(USER_ID, "F")
        state = await mirror.get_sync_state(USER_ID, fresh=True)

        # Core update; the loaded state keeps the old version
        await mirror.rearm_sync_state(USER_ID, "F")

        with pytest.raises(RootMismatchError):
            await mirror.update_sync_state(state, change_cursor="1")

    async def test_claim_is_exclusive_until_finished(self, mirror, db_session):
        await mirror.save_sync_settings(USER_ID, "F", "Photos")
        await mirror.rearm_sync_state(USER_ID, "F")
        state = await mirror.get_sync_state(USER_ID, fresh=True)
        version = state.version

        batch_id = await mirror.claim_batch(state)
        assert batch_id is not None

        state = await mirror.get_sync_state(USER_ID, fresh=True)
        assert state.active_batch_id == batch_id
        assert await mirror.claim_batch(state) is None

        await mirror.finish_batch(USER_ID, batch_id, version + 1, pending_folders_json="[]")
        state = await mirror.get_sync_state(USER_ID, fresh=True)
        assert state.active_batch_id is None
        assert state.pending_folders == []
        assert await mirror.claim_batch(state) is not None

    async def test_stale_lease_can_be_taken_over(self, mirror, db_session):
        await mirror.save_sync_settings(USER_ID, "F", "Photos")
        await mirror.rearm_sync_state(USER_ID, "F")
        state = await mirror.get_sync_state(USER_ID, fresh=True)
        await mirror.update_sync_state(
            state,
            active_batch_id="crashed-batch",
            batch_started_at=datetime.now(timezone.utc) - timedelta(hours=2),
        )

        state = await mirror.get_sync_state(USER_ID, fresh=True)
        assert await mirror.claim_batch(state) is not None

    async def test_finish_after_rearm_fails(self, mirror, db_session):
        await mirror.save_sync_settings(USER_ID, "F", "Photos")
        await mirror.rearm_sync_state(USER_ID, "F")
        state = await mirror.get_sync_state(USER_ID, fresh=True)
        version = state.version
        batch_id = await mirror.claim_batch(state)

        await mirror.rearm_sync_state(USER_ID, "F")

        with pytest.raises(RootMismatchError):
            await mirror.finish_batch(USER_ID, batch_id, version + 1)


class TestItems:
    """Tests for item upserts and status transitions."""

    async def test_upsert_creates_then_updates(self, mirror):
        parent = await mirror.upsert_folder(USER_ID, "F", "Photos", None, "Photos")

        first = await mirror.upsert_item(USER_ID, photo(), parent, seen_at=NOW)
        second = await mirror.upsert_item(
            USER_ID, photo(name="renamed.jpg"), parent, seen_at=NOW
        )

        assert first.created and not second.created
        assert second.item.id == first.item.id
        assert second.item.name == "renamed.jpg"
        assert second.item.path_cached == "Photos / renamed.jpg"
        assert second.item.origin_folder_name == "Photos"
        assert (await mirror.count_items(USER_ID))["total"] == 1

    async def test_removed_item_is_reactivated(self, mirror):
        parent = await mirror.upsert_folder(USER_ID, "F", "Photos", None, "Photos")
        await mirror.upsert_item(USER_ID, photo(), parent, seen_at=NOW)

        assert await mirror.mark_item_removed(USER_ID, "x", NOW)
        item = await mirror.get_item(USER_ID, "x")
        assert item.status == ItemStatus.MISSING
        assert item.origin_missing_since == NOW

        upsert = await mirror.upsert_item(
            USER_ID, photo(), parent, seen_at=NOW + timedelta(minutes=5)
        )
        assert upsert.reactivated
        assert upsert.item.status == ItemStatus.ACTIVE
        assert upsert.item.origin_status == OriginStatus.ACTIVE
        assert upsert.item.origin_missing_since is None

    async def test_trashed_item_is_deleted_status(self, mirror):
        await mirror.upsert_item(USER_ID, photo(), None, seen_at=NOW)

        assert await mirror.mark_item_trashed(USER_ID, "x", NOW)
        item = await mirror.get_item(USER_ID, "x")
        assert item.status == ItemStatus.DELETED
        assert item.trashed is True
        assert await mirror.mark_item_trashed(USER_ID, "unknown", NOW) is False

    async def test_unknown_parent_keeps_previous_location(self, mirror):
        parent = await mirror.upsert_folder(USER_ID, "F", "Photos", None, "Photos")
        await mirror.upsert_item(USER_ID, photo(), parent, seen_at=NOW)

        upsert = await mirror.upsert_item(USER_ID, photo(parent="elsewhere"), None, seen_at=NOW)

        assert upsert.item.path_cached == "Photos / x.jpg"
        assert upsert.item.parent_id == "elsewhere"

    async def test_mark_items_missing_only_touches_unobserved(self, mirror, db_session):
        scan_started_at = NOW
        await mirror.upsert_item(USER_ID, photo("old"), None, seen_at=NOW - timedelta(days=1))
        await mirror.upsert_item(USER_ID, photo("seen"), None, seen_at=NOW + timedelta(minutes=1))
        await mirror.upsert_item("other-user", photo("old"), None, seen_at=NOW - timedelta(days=1))

        marked = await mirror.mark_items_missing(USER_ID, scan_started_at, NOW)
        await db_session.commit()

        assert marked == 1
        missing = await mirror.list_items(USER_ID, origin_status=OriginStatus.MISSING)
        assert [i.file_id for i in missing] == ["old"]
        assert await mirror.count_orphans(USER_ID) == 1
        assert await mirror.count_orphans("other-user") == 0

    async def test_delete_items(self, mirror):
        upsert = await mirror.upsert_item(USER_ID, photo(), None, seen_at=NOW)

        assert await mirror.delete_items(USER_ID, [upsert.item.id]) == 1
        assert await mirror.delete_items(USER_ID, []) == 0


class TestNotifications:
    """Tests for orphan notifications."""

    async def test_acknowledge(self, mirror):
        notification = await mirror.add_notification(USER_ID, 3, "sync-1")

        assert len(await mirror.list_notifications(USER_ID)) == 1
        acked = await mirror.acknowledge_notification(USER_ID, notification.id)
        assert acked.acknowledged is True
        assert await mirror.list_notifications(USER_ID) == []
        assert len(await mirror.list_notifications(USER_ID, include_acknowledged=True)) == 1

    async def test_acknowledge_other_users_notification(self, mirror):
        notification = await mirror.add_notification("other-user", 3, "sync-1")

        assert await mirror.acknowledge_notification(USER_ID, notification.id) is None
