"""Tests for the Alembic migrations."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, select
from sqlalchemy.orm import Session

from app.db.base import Base
from app.db.models import DriveItem, ItemStatus, MediaKind, SyncState, SyncStatus

ALEMBIC_DIR = Path(__file__).resolve().parent.parent / "alembic"


def alembic_config(db_path: Path) -> Config:
    config = Config()
    config.set_main_option("script_location", str(ALEMBIC_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{db_path}")
    return config


def test_upgrade_creates_every_model_table(tmp_path):
    db_path = tmp_path / "migrated.db"

    command.upgrade(alembic_config(db_path), "head")

    engine = create_engine(f"sqlite:///{db_path}")
    tables = set(inspect(engine).get_table_names())
    assert set(Base.metadata.tables) <= tables

    # Enum columns accept what the ORM writes
    with Session(engine) as session:
        session.add(SyncState(user_id="u", status=SyncStatus.ERROR, pending_folders_json="[]"))
        session.add(
            DriveItem(
                user_id="u",
                file_id="x",
                name="x.jpg",
                media_kind=MediaKind.PHOTO,
                status=ItemStatus.MISSING,
                last_sync_seen_at=datetime.now(timezone.utc),
            )
        )
        session.commit()
        state = session.execute(select(SyncState)).scalar_one()
        item = session.execute(select(DriveItem)).scalar_one()
        assert state.status == SyncStatus.ERROR
        assert item.status == ItemStatus.MISSING
    engine.dispose()


def test_downgrade_drops_everything(tmp_path):
    db_path = tmp_path / "migrated.db"
    config = alembic_config(db_path)

    command.upgrade(config, "head")
    command.downgrade(config, "base")

    engine = create_engine(f"sqlite:///{db_path}")
    assert set(inspect(engine).get_table_names()) <= {"alembic_version"}
    engine.dispose()
