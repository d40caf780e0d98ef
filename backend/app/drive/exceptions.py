"""Exceptions raised by the Drive synchronization engine."""

from __future__ import annotations


class DriveSyncError(Exception):
    """Base exception for Drive sync errors.

    ``http_status`` is the status a transport layer should answer with.
    """

    http_status: int = 500

    def __init__(self, message: str, code: str = "SYNC_FAILED"):
        self.message = message
        self.code = code
        super().__init__(message)


# ========== Credential errors ==========


class NoCredentialError(DriveSyncError):
    """Raised when the user never connected a Google account."""

    http_status = 401

    def __init__(self, message: str = "Google Drive is not connected"):
        super().__init__(message, "DRIVE_NOT_CONNECTED")


class NeedsReconsentError(DriveSyncError):
    """Raised when the refresh token is missing, revoked or expired."""

    http_status = 401

    def __init__(self, message: str = "Google Drive authorization must be renewed"):
        super().__init__(message, "NEEDS_RECONSENT")


class InsufficientScopeError(DriveSyncError):
    """Raised when the token is valid but lacks a required scope."""

    http_status = 403

    def __init__(self, message: str = "Google Drive permission scope is insufficient"):
        super().__init__(message, "INSUFFICIENT_SCOPE")


# ========== Provider errors ==========


class ProviderUnavailableError(DriveSyncError):
    """Raised when Google stays unavailable after all retries."""

    http_status = 503

    def __init__(self, message: str = "Google Drive is temporarily unavailable"):
        super().__init__(message, "PROVIDER_UNAVAILABLE")


class DriveRequestError(DriveSyncError):
    """Raised for non-retryable 4xx responses."""

    http_status = 502

    def __init__(self, message: str, status: int | None = None, detail: str = ""):
        super().__init__(message, "DRIVE_REQUEST_FAILED")
        self.status = status
        self.detail = detail  # Raw error body from Google


class DriveNotFoundError(DriveRequestError):
    """Raised when a file or folder does not exist or is not visible."""

    def __init__(self, message: str, detail: str = ""):
        super().__init__(message, status=404, detail=detail)
        self.code = "DRIVE_NOT_FOUND"


class CursorInvalidError(DriveSyncError):
    """Raised when Drive rejects a change cursor as invalid or expired."""

    http_status = 409

    def __init__(self, message: str = "Change cursor rejected by Google Drive"):
        super().__init__(message, "CURSOR_INVALID")


# ========== Engine errors ==========


class RootMismatchError(DriveSyncError):
    """Raised when the selected folder changed underneath a sync."""

    http_status = 409

    def __init__(
        self,
        state_root: str | None = None,
        settings_root: str | None = None,
        message: str = "Selected folder changed, re-arm the sync",
    ):
        super().__init__(message, "ROOT_MISMATCH")
        self.state_root = state_root
        self.settings_root = settings_root


class BatchInProgressError(DriveSyncError):
    """Raised when another batch holds the user's sync lease."""

    http_status = 409

    def __init__(self, message: str = "A sync batch is already running"):
        super().__init__(message, "BATCH_IN_PROGRESS")


class SyncNotInitializedError(DriveSyncError):
    """Raised when no folder was armed for the user."""

    http_status = 409

    def __init__(self, message: str = "Sync not initialized, select a folder first"):
        super().__init__(message, "SYNC_NOT_INITIALIZED")


class ScanIncompleteError(DriveSyncError):
    """Raised when reconciliation is requested before a full pass completed."""

    http_status = 409

    def __init__(self, message: str = "Full scan has not completed"):
        super().__init__(message, "SCAN_INCOMPLETE")


class RepositoryError(DriveSyncError):
    """Raised when the local mirror cannot be read or written."""

    http_status = 500

    def __init__(self, message: str = "Local storage failure"):
        super().__init__(message, "REPOSITORY_ERROR")
