"""Tests for GoogleDriveClient - Drive v3 paging, retries and error mapping.

Tests cover:
- File resource parsing
- Folder listing across pages
- Backoff on 429/403/5xx and socket errors
- Mapping of Google errors to sync errors
- Change feed paging and cursor invalidation

The Drive service is mocked; no test talks to Google.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from app.drive.client import (
    FOLDER_MIME_TYPE,
    FileInfo,
    GoogleDriveClient,
    backoff_delay,
)
from app.drive.exceptions import (
    CursorInvalidError,
    DriveNotFoundError,
    DriveRequestError,
    InsufficientScopeError,
    NeedsReconsentError,
    ProviderUnavailableError,
)


def http_error(status: int, content: bytes = b"{}") -> HttpError:
    resp = MagicMock(status=status, reason="error")
    return HttpError(resp, content)


FOLDER = {"id": "A", "name": "Summer", "mimeType": FOLDER_MIME_TYPE, "parents": ["F"]}
PHOTO = {
    "id": "x",
    "name": "x.jpg",
    "mimeType": "image/jpeg",
    "parents": ["F"],
    "size": "2048",
    "md5Checksum": "abc123",
    "createdTime": "2024-05-01T10:00:00.000Z",
    "modifiedTime": "2024-05-02T11:30:00.000Z",
    "imageMediaMetadata": {"width": 4000, "height": 3000, "time": "2024:04:30 09:15:00"},
}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_service() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(mock_service) -> GoogleDriveClient:
    return GoogleDriveClient("access-token", service=mock_service)


@pytest.fixture
def mock_sleep():
    with patch("app.drive.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# =============================================================================
# Parsing
# =============================================================================


class TestFileInfo:
    """Tests for FileInfo.from_api."""

    def test_parses_file_resource(self):
        info = FileInfo.from_api(PHOTO)

        assert info.id == "x"
        assert info.size == 2048
        assert info.md5_checksum == "abc123"
        assert info.modified_time == datetime(2024, 5, 2, 11, 30, tzinfo=timezone.utc)
        assert info.parent_id == "F"
        assert info.image_metadata["width"] == 4000
        assert not info.is_folder

    def test_parses_folder_without_optional_fields(self):
        info = FileInfo.from_api(FOLDER)

        assert info.is_folder
        assert info.size is None
        assert info.trashed is False

    def test_root_has_no_parent(self):
        assert FileInfo.from_api({"id": "root"}).parent_id is None


class TestBackoffDelay:
    """Tests for backoff_delay."""

    def test_grows_and_is_capped(self):
        first = backoff_delay(0)
        assert 0.4 <= first <= 0.4 * 1.3
        assert backoff_delay(3) > backoff_delay(0)
        assert backoff_delay(50) <= 60.0 * 1.3


# =============================================================================
# Folder listing
# =============================================================================


class TestListChildren:
    """Tests for list_children."""

    async def test_follows_every_page(self, client, mock_service):
        request = mock_service.files.return_value.list.return_value
        request.execute.side_effect = [
            {"files": [FOLDER], "nextPageToken": "page-2"},
            {"files": [PHOTO]},
        ]

        children = await client.list_children("F")

        assert [c.id for c in children] == ["A", "x"]
        calls = mock_service.files.return_value.list.call_args_list
        assert len(calls) == 2
        assert calls[0].kwargs["pageToken"] is None
        assert calls[1].kwargs["pageToken"] == "page-2"
        assert calls[0].kwargs["q"] == "'F' in parents and trashed = false"

    async def test_empty_folder(self, client, mock_service):
        mock_service.files.return_value.list.return_value.execute.return_value = {}

        assert await client.list_children("empty") == []


# =============================================================================
# Retries & error mapping
# =============================================================================


class TestRetries:
    """Tests for backoff and error translation."""

    async def test_rate_limit_is_retried(self, client, mock_service, mock_sleep):
        request = mock_service.files.return_value.list.return_value
        request.execute.side_effect = [http_error(429), {"files": [PHOTO]}]

        children = await client.list_children("F")

        assert [c.id for c in children] == ["x"]
        mock_sleep.assert_awaited_once()

    async def test_quota_403_is_retried(self, client, mock_service, mock_sleep):
        request = mock_service.files.return_value.list.return_value
        request.execute.side_effect = [
            http_error(403, b'{"error": {"errors": [{"reason": "userRateLimitExceeded"}]}}'),
            {"files": []},
        ]

        assert await client.list_children("F") == []
        assert mock_sleep.await_count == 1

    async def test_socket_error_is_retried(self, client, mock_service, mock_sleep):
        request = mock_service.files.return_value.list.return_value
        request.execute.side_effect = [TimeoutError("read timed out"), {"files": []}]

        assert await client.list_children("F") == []
        assert mock_sleep.await_count == 1

    async def test_exhausted_retries_are_unavailable(self, client, mock_service, mock_sleep):
        request = mock_service.files.return_value.list.return_value
        request.execute.side_effect = http_error(503)

        with patch("app.drive.client.settings") as mock_settings:
            mock_settings.drive_max_retries = 2
            mock_settings.drive_backoff_base = 0.1
            mock_settings.drive_backoff_factor = 2
            mock_settings.drive_backoff_max = 1
            mock_settings.drive_page_size = 100
            with pytest.raises(ProviderUnavailableError):
                await client.list_children("F")

        assert request.execute.call_count == 3
        assert mock_sleep.await_count == 2

    async def test_401_needs_reconsent(self, client, mock_service, mock_sleep):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(401)

        with pytest.raises(NeedsReconsentError):
            await client.list_children("F")
        mock_sleep.assert_not_awaited()

    async def test_scope_403_is_not_retried(self, client, mock_service, mock_sleep):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(
            403, b'{"error": {"errors": [{"reason": "insufficientPermissions"}]}}'
        )

        with pytest.raises(InsufficientScopeError):
            await client.list_children("F")
        mock_sleep.assert_not_awaited()

    async def test_404_is_not_found(self, client, mock_service, mock_sleep):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(404)

        with pytest.raises(DriveNotFoundError) as exc_info:
            await client.list_children("gone")
        assert exc_info.value.status == 404

    async def test_other_4xx_is_request_error(self, client, mock_service, mock_sleep):
        mock_service.files.return_value.list.return_value.execute.side_effect = http_error(
            400, b"Invalid query"
        )

        with pytest.raises(DriveRequestError) as exc_info:
            await client.list_children("F")
        assert exc_info.value.status == 400
        assert "Invalid query" in exc_info.value.detail
        mock_sleep.assert_not_awaited()


# =============================================================================
# Change feed
# =============================================================================


class TestChangeFeed:
    """Tests for get_change_cursor and list_changes."""

    async def test_get_change_cursor(self, client, mock_service):
        changes = mock_service.changes.return_value
        changes.getStartPageToken.return_value.execute.return_value = {"startPageToken": "42"}

        assert await client.get_change_cursor() == "42"

    async def test_list_changes_page(self, client, mock_service):
        changes = mock_service.changes.return_value
        changes.list.return_value.execute.return_value = {
            "changes": [
                {"fileId": "x", "removed": False, "file": PHOTO},
                {"fileId": "y", "removed": True},
            ],
            "newStartPageToken": "43",
        }

        page = await client.list_changes("42")

        assert changes.list.call_args.kwargs["pageToken"] == "42"
        assert page.new_start_page_token == "43"
        assert page.next_page_token is None
        assert page.changes[0].file.name == "x.jpg"
        assert page.changes[1].removed is True
        assert page.changes[1].file is None

    async def test_gone_cursor_is_invalid(self, client, mock_service, mock_sleep):
        changes = mock_service.changes.return_value
        changes.list.return_value.execute.side_effect = http_error(410)

        with pytest.raises(CursorInvalidError):
            await client.list_changes("1")

    async def test_bad_page_token_is_invalid(self, client, mock_service, mock_sleep):
        changes = mock_service.changes.return_value
        changes.list.return_value.execute.side_effect = http_error(
            400, b'{"error": {"message": "Invalid Value", "errors": [{"location": "pageToken"}]}}'
        )

        with pytest.raises(CursorInvalidError):
            await client.list_changes("garbage")

    async def test_unrelated_400_is_not_cursor_error(self, client, mock_service, mock_sleep):
        changes = mock_service.changes.return_value
        changes.list.return_value.execute.side_effect = http_error(400, b"Bad fields")

        with pytest.raises(DriveRequestError):
            await client.list_changes("1")
