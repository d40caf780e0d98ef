"""Pytest configuration and fixtures."""

import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Create a temporary directory for test paths
_test_tmp_dir = tempfile.mkdtemp(prefix="drivesync_test_")

# Set config BEFORE importing app modules
os.environ["DRIVESYNC_CONFIG_PATH"] = _test_tmp_dir
os.environ["DRIVESYNC_DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_test_tmp_dir) / 'app.db'}"
os.environ["DRIVESYNC_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["DRIVESYNC_GOOGLE_REQUEST_DELAY"] = "0"

from app.db.base import Base
from app.drive.client import FOLDER_MIME_TYPE, ChangeInfo, ChangePage, FileInfo
from app.drive.exceptions import CursorInvalidError, ProviderUnavailableError
from app.drive.rate_limiter import reset_request_pacer
from app.services.sync_engine import SyncEngine
from app.services.token_vault import CredentialVault

USER_ID = "user-1"


class FakeDrive:
    """In-memory Drive tree with a change feed.

    Every mutation helper appends to the feed, so a cursor is simply the
    number of changes recorded so far.
    """

    def __init__(self, change_page_size: int = 2):
        self.files: dict[str, FileInfo] = {}
        self.feed: list[ChangeInfo] = []
        self.change_page_size = change_page_size
        self.listed: list[str] = []
        self.failing_folders: set[str] = set()
        self.invalid_cursors: set[str] = set()
        self.cursor_requests = 0

    # ========== Tree setup ==========

    def add_folder(self, folder_id: str, name: str, parent: str | None = None) -> FileInfo:
        return self._put(
            FileInfo(
                id=folder_id,
                name=name,
                mime_type=FOLDER_MIME_TYPE,
                parents=[parent] if parent else [],
            )
        )

    def add_file(
        self,
        file_id: str,
        name: str,
        parent: str,
        mime_type: str = "image/jpeg",
        **fields,
    ) -> FileInfo:
        return self._put(
            FileInfo(
                id=file_id,
                name=name,
                mime_type=mime_type,
                parents=[parent],
                size=fields.pop("size", 1024),
                modified_time=fields.pop("modified_time", datetime(2024, 5, 1, tzinfo=timezone.utc)),
                **fields,
            )
        )

    def _put(self, file: FileInfo) -> FileInfo:
        self.files[file.id] = file
        self.feed.append(ChangeInfo(file_id=file.id, file=file.model_copy(deep=True)))
        return file

    # ========== Remote mutations ==========

    def rename(self, file_id: str, name: str) -> None:
        self._put(self.files[file_id].model_copy(update={"name": name}))

    def move(self, file_id: str, new_parent: str) -> None:
        self.set_parents(file_id, [new_parent])

    def set_parents(self, file_id: str, parents: list[str]) -> None:
        self._put(self.files[file_id].model_copy(update={"parents": list(parents)}))

    def trash(self, file_id: str) -> None:
        self._put(self.files[file_id].model_copy(update={"trashed": True}))

    def delete(self, file_id: str) -> None:
        del self.files[file_id]
        self.feed.append(ChangeInfo(file_id=file_id, removed=True))

    # ========== DriveClient ==========

    async def list_children(self, folder_id: str) -> list[FileInfo]:
        self.listed.append(folder_id)
        if folder_id in self.failing_folders:
            raise ProviderUnavailableError(f"list_children failed for {folder_id}")
        return [
            f.model_copy(deep=True)
            for f in self.files.values()
            if folder_id in f.parents and not f.trashed
        ]

    async def get_change_cursor(self) -> str:
        self.cursor_requests += 1
        return str(len(self.feed))

    async def list_changes(self, cursor: str) -> ChangePage:
        if cursor in self.invalid_cursors:
            raise CursorInvalidError()
        start = int(cursor)
        changes = self.feed[start:start + self.change_page_size]
        end = start + len(changes)
        if end < len(self.feed):
            return ChangePage(changes=changes, next_page_token=str(end))
        return ChangePage(changes=changes, new_start_page_token=str(len(self.feed)))


@pytest.fixture(autouse=True)
def _reset_pacer():
    """Give every test its own request pacer."""
    reset_request_pacer()
    yield
    reset_request_pacer()


@pytest.fixture
async def db_engine(tmp_path):
    """Create a file-backed test database engine.

    A file rather than ``:memory:`` so several sessions see the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def photo_tree(drive: FakeDrive) -> FakeDrive:
    """Root ``F`` with subfolders ``A`` and ``B`` and one photo ``x.jpg``."""
    drive.add_folder("F", "Photos")
    drive.add_folder("A", "Summer", parent="F")
    drive.add_folder("B", "Winter", parent="F")
    drive.add_file("x", "x.jpg", parent="F")
    return drive


async def connect_user(session: AsyncSession, user_id: str = USER_ID, expires_in: int = 3600):
    """Store a valid Drive credential for ``user_id``."""
    await CredentialVault(session).store_tokens(
        user_id,
        access_token="access-1",
        refresh_token="refresh-1",
        scope="https://www.googleapis.com/auth/drive.readonly",
        expires_in=expires_in,
    )
    await session.commit()


@pytest.fixture
async def connected_user(db_session) -> str:
    await connect_user(db_session)
    return USER_ID


@pytest.fixture
def sync_engine(db_session, drive, connected_user) -> SyncEngine:
    """Engine whose client factory always returns the fake drive."""
    return SyncEngine(db_session, client_factory=lambda token: drive)


def pytest_sessionfinish(session, exitstatus):
    """Clean up temp directories after test session."""
    if Path(_test_tmp_dir).exists():
        shutil.rmtree(_test_tmp_dir, ignore_errors=True)
