"""Sync state machine: the operations the host application calls.

States are ``idle``, ``running`` and ``error``. Every mutating operation goes
through one error policy:

- stale-request signals (root mismatch, batch in progress, not armed,
  scan incomplete) are raised to the caller and touch nothing;
- any other failure rolls back the batch, records ``status=error`` with
  ``last_error`` and re-raises;
- database failures are re-raised as ``RepositoryError``.

Re-arming leaves ``error`` by starting over; a successful batch after a
credential reconnection leaves it by resuming the stored queue.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.drive.client import DriveClient, GoogleDriveClient
from app.drive.exceptions import (
    BatchInProgressError,
    DriveSyncError,
    RepositoryError,
    RootMismatchError,
    ScanIncompleteError,
    SyncNotInitializedError,
)
from app.services.drive_changes import DeltaPuller, PeekResult, PullResult
from app.services.drive_indexer import DriveIndexer
from app.services.drive_sync import BatchResult, SyncRunner
from app.services.mirror import MirrorRepository
from app.services.reconciler import PurgeResult, ReconcileResult, Reconciler
from app.services.token_vault import CredentialVault
from app.utils.dates import as_utc

logger = get_logger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[str], DriveClient]

# Raised to the caller without moving the state machine
STALE_REQUEST_ERRORS = (
    RootMismatchError,
    BatchInProgressError,
    SyncNotInitializedError,
    ScanIncompleteError,
)


@dataclass
class SyncDiagnostics:
    """Read-only snapshot of a user's sync configuration and progress."""

    user_id: str
    settings: dict[str, Any] | None
    state: dict[str, Any] | None
    items: dict[str, int] = field(default_factory=dict)
    orphans: int = 0
    unacknowledged_notifications: int = 0
    root_matches: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


class SyncEngine:
    """Entry point for arming, running and inspecting a user's Drive sync."""

    def __init__(
        self,
        db: AsyncSession,
        client_factory: ClientFactory = GoogleDriveClient,
        vault: CredentialVault | None = None,
    ):
        """Initialize the engine.

        Args:
            db: Session used for every operation.
            client_factory: Builds a Drive client from an access token.
            vault: Credential vault, defaults to one on ``db``.
        """
        self.db = db
        self.client_factory = client_factory
        self.vault = vault or CredentialVault(db)
        self.mirror = MirrorRepository(db)

    async def _client(self, user_id: str) -> DriveClient:
        token = await self.vault.ensure_valid_access_token(user_id)
        return self.client_factory(token)

    async def _guarded(
        self,
        user_id: str,
        operation: str,
        action: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``action`` under the engine's error policy and commit on success."""
        try:
            result = await action()
            await self.db.commit()
            return result
        except STALE_REQUEST_ERRORS as e:
            await self.db.rollback()
            logger.info(
                "sync_request_rejected",
                user_id=user_id,
                operation=operation,
                code=e.code,
            )
            raise
        except DriveSyncError as e:
            await self._record_failure(user_id, operation, e.message)
            raise
        except SQLAlchemyError as e:
            await self._record_failure(user_id, operation, str(e))
            raise RepositoryError(f"Local storage failure during {operation}") from e

    async def _record_failure(self, user_id: str, operation: str, message: str) -> None:
        logger.error(
            "sync_operation_failed",
            user_id=user_id,
            operation=operation,
            error=message,
        )
        await self.db.rollback()
        try:
            await self.mirror.mark_sync_error(user_id, message)
            await self.db.commit()
        except SQLAlchemyError as e:
            # The original failure is what the caller needs to see
            logger.error(
                "sync_error_state_not_recorded",
                user_id=user_id,
                operation=operation,
                error=str(e),
            )
            await self.db.rollback()

    # ========== Operations ==========

    async def arm_sync(
        self,
        user_id: str,
        folder_id: str,
        folder_name: str,
        folder_path: str | None = None,
    ) -> None:
        """Select ``folder_id`` as the root and restart the walk from it.

        Unconditional: a batch still running against the previous root
        fails its final compare-and-swap.
        """
        try:
            await self.mirror.save_sync_settings(user_id, folder_id, folder_name, folder_path)
            await DriveIndexer(self.db).seed(user_id, folder_id, folder_name, folder_path)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise RepositoryError("Local storage failure during arm_sync") from e

        logger.info("sync_armed", user_id=user_id, folder_id=folder_id)

    async def run_sync_batch(
        self, user_id: str, folder_budget: int | None = None
    ) -> BatchResult:
        """Run one bounded step of the full walk."""
        budget = folder_budget or settings.sync_folder_budget

        async def action() -> BatchResult:
            client = await self._client(user_id)
            return await SyncRunner(self.db, client).run_batch(user_id, budget)

        return await self._guarded(user_id, "run_sync_batch", action)

    async def pull_changes(self, user_id: str) -> PullResult:
        """Apply the change feed since the stored cursor."""

        async def action() -> PullResult:
            client = await self._client(user_id)
            return await DeltaPuller(self.db, client).pull(user_id)

        return await self._guarded(user_id, "pull_changes", action)

    async def peek_changes(self, user_id: str) -> PeekResult:
        """Count pending remote changes; never writes."""
        state = await self.mirror.get_sync_state(user_id, fresh=True)
        if state is None or not state.change_cursor:
            return PeekResult()
        client = await self._client(user_id)
        try:
            return await DeltaPuller(self.db, client).peek(user_id)
        except SQLAlchemyError as e:
            raise RepositoryError("Local storage failure during peek_changes") from e

    async def finalize_sync(self, user_id: str) -> ReconcileResult:
        """Reconcile orphans after a completed full pass."""
        return await self._guarded(
            user_id, "finalize_sync", lambda: Reconciler(self.db).finalize(user_id)
        )

    async def purge_orphans(self, user_id: str) -> PurgeResult:
        """Apply the user's orphan retention, if enabled."""
        try:
            result = await Reconciler(self.db).purge_expired_orphans(user_id)
            await self.db.commit()
            return result
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise RepositoryError("Local storage failure during purge_orphans") from e

    async def get_sync_diagnostics(self, user_id: str) -> SyncDiagnostics:
        """Snapshot of settings, state and mirror counts for support."""
        sync_settings = await self.mirror.get_sync_settings(user_id)
        state = await self.mirror.get_sync_state(user_id, fresh=True)

        settings_view = None
        if sync_settings is not None:
            settings_view = {
                "drive_folder_id": sync_settings.drive_folder_id,
                "drive_folder_name": sync_settings.drive_folder_name,
                "drive_folder_path": sync_settings.drive_folder_path,
                "auto_delete_enabled": sync_settings.auto_delete_enabled,
                "auto_delete_orphans_days": sync_settings.auto_delete_orphans_days,
                "updated_at": _iso(sync_settings.updated_at),
            }

        state_view = None
        if state is not None:
            state_view = {
                "root_folder_id": state.root_folder_id,
                "pending_folders": state.pending_folders,
                "status": state.status.value,
                "last_error": state.last_error,
                "has_change_cursor": bool(state.change_cursor),
                "scan_started_at": _iso(state.scan_started_at),
                "last_full_scan_at": _iso(state.last_full_scan_at),
                "last_changes_at": _iso(state.last_changes_at),
                "last_reconciled_at": _iso(state.last_reconciled_at),
                "stats": state.stats,
                "batch_active": state.active_batch_id is not None,
                "updated_at": _iso(state.updated_at),
            }

        notifications = await self.mirror.list_notifications(user_id)

        return SyncDiagnostics(
            user_id=user_id,
            settings=settings_view,
            state=state_view,
            items=await self.mirror.count_items(user_id),
            orphans=await self.mirror.count_orphans(user_id),
            unacknowledged_notifications=len(notifications),
            root_matches=bool(
                sync_settings
                and state
                and sync_settings.drive_folder_id == state.root_folder_id
            ),
        )
