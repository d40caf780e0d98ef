"""DriveItem model: mirrored photo and video files."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.enums import ItemStatus, MediaKind, OriginStatus


class DriveItem(Base):
    """A file leaf under the user's root, keyed by (user_id, file_id).

    Items are created on first observation and never deleted by a sync pass:
    disappearance moves them to ``missing`` so labels and collections
    attached elsewhere survive transient outages or unshares.
    """

    __tablename__ = "drive_items"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    file_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # Provider metadata
    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    md5_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    modified_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    parents_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    trashed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Denormalized location
    parent_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    origin_folder_name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    path_cached: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Media metadata
    media_kind: Mapped[MediaKind | None] = mapped_column(Enum(MediaKind), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    taken_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Lifecycle
    status: Mapped[ItemStatus] = mapped_column(
        Enum(ItemStatus), default=ItemStatus.ACTIVE, nullable=False
    )
    origin_status: Mapped[OriginStatus] = mapped_column(
        Enum(OriginStatus), default=OriginStatus.ACTIVE, nullable=False
    )
    origin_missing_since: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_seen_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, doc="Stamped when a full pass re-observes the item"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "file_id", name="uq_drive_items_user_file"),
        Index("ix_drive_items_user_status", "user_id", "status"),
        Index("ix_drive_items_user_origin", "user_id", "origin_status"),
    )

    @property
    def parents(self) -> list[str]:
        """Parent folder IDs as reported by Drive."""
        return list(json.loads(self.parents_json or "[]"))

    @parents.setter
    def parents(self, value: list[str]) -> None:
        self.parents_json = json.dumps(list(value))
