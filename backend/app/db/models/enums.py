"""Enum types for database models."""

from __future__ import annotations

import enum


class SyncStatus(str, enum.Enum):
    """Lifecycle of a user's sync state."""

    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class ItemStatus(str, enum.Enum):
    """Availability of a mirrored file."""

    ACTIVE = "active"
    MISSING = "missing"  # Not re-observed, or removed from the change feed
    DELETED = "deleted"  # Trashed on the provider side


class OriginStatus(str, enum.Enum):
    """Whether the file is still present in the selected root folder."""

    ACTIVE = "active"
    MISSING = "missing"


class MediaKind(str, enum.Enum):
    """Kind of media derived from the MIME type."""

    PHOTO = "photo"
    VIDEO = "video"


class NotificationKind(str, enum.Enum):
    """Orphan notification categories."""

    ORPHANS_DETECTED = "orphans_detected"
    ORPHANS_EXPIRING = "orphans_expiring"
