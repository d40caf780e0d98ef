"""DriveFolder model: mirrored Google Drive folders."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class DriveFolder(Base):
    """A folder under the user's root, keyed by (user_id, folder_id).

    ``parent_id`` is a weak reference to another DriveFolder; no foreign key
    is declared because children may be observed before their parent.
    Folders are never deleted, only flagged as trashed.
    """

    __tablename__ = "drive_folders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    folder_id: Mapped[str] = mapped_column(String(128), nullable=False)

    name: Mapped[str] = mapped_column(String(512), nullable=False)
    parent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    path_cached: Mapped[str | None] = mapped_column(
        Text, nullable=True, doc="Denormalized 'A / B / C' path"
    )
    trashed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "folder_id", name="uq_drive_folders_user_folder"),
        Index("ix_drive_folders_user_parent", "user_id", "parent_id"),
    )
