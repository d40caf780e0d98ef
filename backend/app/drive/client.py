"""Google Drive v3 client used by the sync engine.

Provides:
- Folder listing with transparent paging per folder
- Change cursor retrieval and change-feed paging
- Request pacing and exponential backoff on 429/403/5xx
- Translation of Google errors into the sync error taxonomy
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime
from typing import Any, Callable, Protocol

from google.oauth2.credentials import Credentials as OAuthCredentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.logging import get_logger
from app.drive.exceptions import (
    CursorInvalidError,
    DriveNotFoundError,
    DriveRequestError,
    InsufficientScopeError,
    NeedsReconsentError,
    ProviderUnavailableError,
)
from app.drive.rate_limiter import get_request_pacer

logger = get_logger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Status codes worth retrying (quota, rate limit, server side)
RETRYABLE_STATUSES = frozenset({403, 429, 500, 502, 503, 504})

# 403 reasons that mean "reconnect with broader consent", not "slow down"
SCOPE_ERROR_MARKERS = ("insufficientpermissions", "access_token_scope_insufficient")

BACKOFF_JITTER = 0.3

FILE_FIELDS = (
    "id,name,mimeType,parents,trashed,md5Checksum,size,createdTime,modifiedTime,"
    "imageMediaMetadata,videoMediaMetadata"
)


def _parse_time(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by Drive."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def backoff_delay(attempt: int) -> float:
    """Delay before retry number ``attempt`` (zero based).

    ``base * factor ** attempt`` capped at ``drive_backoff_max``, plus up to
    30% positive jitter so parallel users don't retry in lockstep.
    """
    delay = min(
        settings.drive_backoff_base * (settings.drive_backoff_factor ** attempt),
        settings.drive_backoff_max,
    )
    return delay + delay * BACKOFF_JITTER * random.random()


class FileInfo(BaseModel):
    """A file or folder as reported by Drive."""

    id: str
    name: str = ""
    mime_type: str = ""
    size: int | None = None
    md5_checksum: str | None = None
    created_time: datetime | None = None
    modified_time: datetime | None = None
    parents: list[str] = Field(default_factory=list)
    trashed: bool = False
    image_metadata: dict[str, Any] | None = None
    video_metadata: dict[str, Any] | None = None

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def parent_id(self) -> str | None:
        return self.parents[0] if self.parents else None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> FileInfo:
        """Build from a Drive ``File`` resource."""
        size = data.get("size")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", ""),
            size=int(size) if size is not None else None,
            md5_checksum=data.get("md5Checksum"),
            created_time=_parse_time(data.get("createdTime")),
            modified_time=_parse_time(data.get("modifiedTime")),
            parents=list(data.get("parents") or []),
            trashed=bool(data.get("trashed", False)),
            image_metadata=data.get("imageMediaMetadata"),
            video_metadata=data.get("videoMediaMetadata"),
        )


class ChangeInfo(BaseModel):
    """One entry of the Drive change feed."""

    file_id: str
    removed: bool = False
    file: FileInfo | None = None


class ChangePage(BaseModel):
    """A page of the change feed.

    Exactly one of ``next_page_token`` (more pages follow) and
    ``new_start_page_token`` (feed exhausted, the cursor to store) is set.
    """

    changes: list[ChangeInfo] = Field(default_factory=list)
    next_page_token: str | None = None
    new_start_page_token: str | None = None


class DriveClient(Protocol):
    """Operations the sync engine needs from a remote tree."""

    async def list_children(self, folder_id: str) -> list[FileInfo]: ...

    async def get_change_cursor(self) -> str: ...

    async def list_changes(self, cursor: str) -> ChangePage: ...


class GoogleDriveClient:
    """Thin retrying wrapper around the Drive v3 API for one access token."""

    def __init__(self, access_token: str, service: Any | None = None):
        """Initialize the client.

        Args:
            access_token: A currently valid OAuth access token.
            service: Optional prebuilt Drive service (used by tests).
        """
        self._access_token = access_token
        self._service = service

    def _get_drive_service(self) -> Any:
        """Get a Drive API service instance, building it on first use."""
        if self._service is None:
            creds = OAuthCredentials(token=self._access_token)
            self._service = build(
                "drive", "v3", credentials=creds, cache_discovery=False
            )
        return self._service

    async def _execute(
        self,
        make_request: Callable[[Any], Any],
        operation: str,
        **log_context: Any,
    ) -> dict[str, Any]:
        """Execute a Drive request with pacing and exponential backoff.

        Args:
            make_request: Builds the request from the Drive service.
            operation: Description of the operation for logging.

        Returns:
            The decoded JSON response.

        Raises:
            NeedsReconsentError: On 401.
            InsufficientScopeError: On 403 caused by missing scopes.
            DriveNotFoundError: On 404.
            DriveRequestError: On any other non-retryable status.
            ProviderUnavailableError: If retries are exhausted.
        """
        service = self._get_drive_service()
        max_retries = settings.drive_max_retries
        last_error = ""

        for attempt in range(max_retries + 1):
            await get_request_pacer().acquire()
            try:
                request = make_request(service)
                return await asyncio.to_thread(request.execute)
            except HttpError as e:
                status = int(e.resp.status)
                detail = _error_detail(e)

                if status == 401:
                    raise NeedsReconsentError(
                        "Google rejected the access token"
                    ) from e
                if status == 403 and any(m in detail.lower() for m in SCOPE_ERROR_MARKERS):
                    raise InsufficientScopeError() from e
                if status == 404:
                    raise DriveNotFoundError(
                        f"Not found during {operation}", detail=detail
                    ) from e
                if status not in RETRYABLE_STATUSES:
                    raise DriveRequestError(
                        f"Google API error {status} during {operation}",
                        status=status,
                        detail=detail,
                    ) from e
                last_error = f"HTTP {status}"
            except OSError as e:
                # Socket level failures (timeouts, resets)
                last_error = str(e) or e.__class__.__name__

            if attempt >= max_retries:
                break

            delay = backoff_delay(attempt)
            logger.warning(
                "drive_retry",
                operation=operation,
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_seconds=round(delay, 2),
                error=last_error,
                **log_context,
            )
            await asyncio.sleep(delay)

        logger.error(
            "drive_retries_exhausted",
            operation=operation,
            attempts=max_retries + 1,
            error=last_error,
            **log_context,
        )
        raise ProviderUnavailableError(
            f"{operation} failed after {max_retries + 1} attempts: {last_error}"
        )

    # ========== Folder listing ==========

    async def list_children_page(
        self, folder_id: str, page_token: str | None = None
    ) -> tuple[list[FileInfo], str | None]:
        """List one page of a folder's non-trashed children.

        Returns:
            Tuple of (files, next_page_token or None).
        """
        response = await self._execute(
            lambda service: service.files().list(
                q=f"'{folder_id}' in parents and trashed = false",
                fields=f"nextPageToken, files({FILE_FIELDS})",
                pageToken=page_token,
                pageSize=settings.drive_page_size,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ),
            "list_children",
            folder_id=folder_id,
        )
        files = [FileInfo.from_api(f) for f in response.get("files", [])]
        return files, response.get("nextPageToken")

    async def list_children(self, folder_id: str) -> list[FileInfo]:
        """List every child of a folder, following all pages."""
        children: list[FileInfo] = []
        page_token: str | None = None
        while True:
            files, page_token = await self.list_children_page(folder_id, page_token)
            children.extend(files)
            if not page_token:
                break
        return children

    # ========== Change feed ==========

    async def get_change_cursor(self) -> str:
        """Get the start page token marking "now" in the change feed."""
        response = await self._execute(
            lambda service: service.changes().getStartPageToken(
                supportsAllDrives=True,
            ),
            "get_change_cursor",
        )
        return response["startPageToken"]

    async def list_changes(self, cursor: str) -> ChangePage:
        """List one page of changes after ``cursor``.

        Raises:
            CursorInvalidError: If Drive no longer accepts the cursor.
        """
        try:
            response = await self._execute(
                lambda service: service.changes().list(
                    pageToken=cursor,
                    pageSize=settings.drive_page_size,
                    fields=(
                        "nextPageToken, newStartPageToken, "
                        f"changes(fileId, removed, file({FILE_FIELDS}))"
                    ),
                    supportsAllDrives=True,
                    includeItemsFromAllDrives=True,
                ),
                "list_changes",
            )
        except DriveRequestError as e:
            if e.status == 410 or (
                e.status in (400, 404) and "pagetoken" in e.detail.lower()
            ):
                raise CursorInvalidError() from e
            raise

        changes = []
        for change in response.get("changes", []):
            file_data = change.get("file")
            changes.append(
                ChangeInfo(
                    file_id=change.get("fileId") or (file_data or {}).get("id", ""),
                    removed=bool(change.get("removed", False)),
                    file=FileInfo.from_api(file_data) if file_data else None,
                )
            )

        return ChangePage(
            changes=changes,
            next_page_token=response.get("nextPageToken"),
            new_start_page_token=response.get("newStartPageToken"),
        )


def _error_detail(error: HttpError) -> str:
    """Decode the error body Google sent back."""
    content = error.content
    if isinstance(content, bytes):
        return content.decode("utf-8", errors="replace")
    return str(content or "")
