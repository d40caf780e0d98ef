"""SyncSettings model: the user's chosen root folder."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class SyncSettings(Base):
    """Folder selection for a user.

    Written by the folder-selection flow; the sync engine only reads it,
    except that re-arming copies the selection into SyncState.
    """

    __tablename__ = "sync_settings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    drive_folder_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    drive_folder_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    drive_folder_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Orphan auto-deletion (opt-in)
    auto_delete_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_delete_orphans_days: Mapped[int] = mapped_column(Integer, default=30)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
