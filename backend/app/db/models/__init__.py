"""Database models for DriveSync."""

from app.db.models.drive_folder import DriveFolder
from app.db.models.drive_item import DriveItem
from app.db.models.enums import (
    ItemStatus,
    MediaKind,
    NotificationKind,
    OriginStatus,
    SyncStatus,
)
from app.db.models.orphan_notification import OrphanNotification
from app.db.models.sync_settings import SyncSettings
from app.db.models.sync_state import SyncState
from app.db.models.user_credential import UserCredential

__all__ = [
    # Models
    "DriveFolder",
    "DriveItem",
    "OrphanNotification",
    "SyncSettings",
    "SyncState",
    "UserCredential",
    # Enums
    "ItemStatus",
    "MediaKind",
    "NotificationKind",
    "OriginStatus",
    "SyncStatus",
]
