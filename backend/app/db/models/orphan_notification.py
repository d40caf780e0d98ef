"""OrphanNotification model: user-facing reconciliation summaries."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.models.enums import NotificationKind


class OrphanNotification(Base):
    """One record per reconciliation run that found orphans."""

    __tablename__ = "orphan_notifications"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[NotificationKind] = mapped_column(
        Enum(NotificationKind), default=NotificationKind.ORPHANS_DETECTED, nullable=False
    )
    items_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sync_id: Mapped[str] = mapped_column(String(64), nullable=False)
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_orphan_notifications_user_ack", "user_id", "acknowledged"),
    )
