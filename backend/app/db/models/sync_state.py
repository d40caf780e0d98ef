"""SyncState model: the durable work queue and cursor for one user."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.enums import SyncStatus


class SyncState(Base):
    """Singleton sync state row per user.

    ``pending_folders`` is the breadth-first queue of folder IDs still to be
    expanded. It is stored as a JSON array and only ever replaced as a whole.
    ``version`` guards every read-modify-write of this row.
    """

    __tablename__ = "sync_states"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    root_folder_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    pending_folders_json: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus), default=SyncStatus.IDLE, nullable=False
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Delta cursor (Drive startPageToken); null until the first full pass completes
    change_cursor: Mapped[str | None] = mapped_column(String(512), nullable=True)

    scan_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_full_scan_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_changes_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_reconciled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    stats_json: Mapped[str] = mapped_column(Text, default="{}", nullable=False)

    # Batch lease
    active_batch_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    batch_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def pending_folders(self) -> list[str]:
        """Folder IDs awaiting expansion, in breadth-first order."""
        return list(json.loads(self.pending_folders_json or "[]"))

    @pending_folders.setter
    def pending_folders(self, value: list[str]) -> None:
        self.pending_folders_json = json.dumps(list(value))

    @property
    def stats(self) -> dict[str, Any]:
        """Counters accumulated since the last re-arm."""
        return dict(json.loads(self.stats_json or "{}"))

    @stats.setter
    def stats(self, value: dict[str, Any]) -> None:
        self.stats_json = json.dumps(dict(value))

    @property
    def is_fully_indexed(self) -> bool:
        """True once the queue is drained and the engine is idle."""
        return not self.pending_folders and self.status == SyncStatus.IDLE
