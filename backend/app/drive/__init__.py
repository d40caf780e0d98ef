"""Google Drive integration module for the sync engine."""

from app.drive.client import (
    FOLDER_MIME_TYPE,
    ChangeInfo,
    ChangePage,
    DriveClient,
    FileInfo,
    GoogleDriveClient,
)
from app.drive.exceptions import (
    BatchInProgressError,
    CursorInvalidError,
    DriveNotFoundError,
    DriveRequestError,
    DriveSyncError,
    InsufficientScopeError,
    NeedsReconsentError,
    NoCredentialError,
    ProviderUnavailableError,
    RepositoryError,
    RootMismatchError,
    ScanIncompleteError,
    SyncNotInitializedError,
)
from app.drive.rate_limiter import RequestPacer, get_request_pacer

__all__ = [
    # Client
    "GoogleDriveClient",
    "DriveClient",
    "FileInfo",
    "ChangeInfo",
    "ChangePage",
    "FOLDER_MIME_TYPE",
    "RequestPacer",
    "get_request_pacer",
    # Exceptions
    "DriveSyncError",
    "NoCredentialError",
    "NeedsReconsentError",
    "InsufficientScopeError",
    "ProviderUnavailableError",
    "DriveRequestError",
    "DriveNotFoundError",
    "CursorInvalidError",
    "RootMismatchError",
    "BatchInProgressError",
    "SyncNotInitializedError",
    "ScanIncompleteError",
    "RepositoryError",
]
