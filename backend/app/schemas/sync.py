"""Pydantic schemas for the Drive sync API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.db.models.enums import NotificationKind


class ArmSyncRequest(BaseModel):
    """Folder chosen by the user as the sync root."""

    folder_id: str = Field(..., min_length=1)
    folder_name: str = Field(..., min_length=1)
    folder_path: str | None = None


class ArmSyncResponse(BaseModel):
    """Result of arming a sync."""

    armed: bool = True
    root_folder_id: str
    pending_folders: list[str]


class RunBatchRequest(BaseModel):
    """Parameters for one sync batch."""

    folder_budget: int | None = Field(default=None, ge=1, le=20)


class BatchResponse(BaseModel):
    """Outcome of one sync batch."""

    done: bool
    processed_folders: int
    updated_items: int
    found_folders: int
    queued: int


class BackgroundSyncResponse(BaseModel):
    """Result of asking for a background sync."""

    started: bool
    already_running: bool = False


class PullResponse(BaseModel):
    """Outcome of one delta pull."""

    processed: int
    added: int
    modified: int
    removed: int
    new_cursor: str | None = None
    reset: bool = False
    initialized: bool = False


class PeekResponse(BaseModel):
    """Pending remote change counts."""

    total: int
    additions: int
    modifications: int
    removals: int
    cursor: str | None = None


class FinalizeResponse(BaseModel):
    """Outcome of orphan reconciliation."""

    orphaned: int
    sync_id: str
    notification_id: str | None = None


class PurgeResponse(BaseModel):
    """Outcome of applying orphan retention."""

    warned: int
    deleted: int


class DiagnosticsResponse(BaseModel):
    """Support snapshot of a user's sync."""

    user_id: str
    settings: dict[str, Any] | None = None
    state: dict[str, Any] | None = None
    items: dict[str, int] = {}
    orphans: int = 0
    unacknowledged_notifications: int = 0
    root_matches: bool = False
    background_running: bool = False


class NotificationResponse(BaseModel):
    """An orphan notification."""

    id: str
    kind: NotificationKind
    items_count: int
    sync_id: str
    acknowledged: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationListResponse(BaseModel):
    """Unacknowledged (or all) notifications for the user."""

    items: list[NotificationResponse]
    total: int


class DriveErrorDetail(BaseModel):
    """Body of every sync error response (under ``detail``)."""

    code: str
    message: str
