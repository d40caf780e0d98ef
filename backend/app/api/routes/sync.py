"""Drive sync API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_client_factory, get_current_user_id, get_session_factory
from app.core.logging import get_logger
from app.db import get_db
from app.drive.exceptions import DriveSyncError
from app.schemas.sync import (
    ArmSyncRequest,
    ArmSyncResponse,
    BackgroundSyncResponse,
    BatchResponse,
    DiagnosticsResponse,
    FinalizeResponse,
    NotificationListResponse,
    NotificationResponse,
    PeekResponse,
    PullResponse,
    PurgeResponse,
    RunBatchRequest,
)
from app.services.sync_engine import ClientFactory, SyncEngine
from app.workers.background_sync import (
    SessionFactory,
    is_background_sync_running,
    start_background_sync,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/drive", tags=["drive-sync"])


def drive_http_error(exc: DriveSyncError) -> HTTPException:
    """Translate a sync error into the HTTP error the caller can act on."""
    return HTTPException(
        status_code=exc.http_status,
        detail={"code": exc.code, "message": exc.message},
    )


def get_sync_engine(
    db: AsyncSession = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
) -> SyncEngine:
    return SyncEngine(db, client_factory=client_factory)


# =============================================================================
# Full sync
# =============================================================================


@router.post("/sync/arm", response_model=ArmSyncResponse)
async def arm_sync(
    request: ArmSyncRequest,
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> ArmSyncResponse:
    """Select a root folder and restart the full walk from it."""
    try:
        await engine.arm_sync(
            user_id, request.folder_id, request.folder_name, request.folder_path
        )
    except DriveSyncError as e:
        raise drive_http_error(e) from e

    return ArmSyncResponse(
        root_folder_id=request.folder_id,
        pending_folders=[request.folder_id],
    )


@router.post("/sync/run", response_model=BatchResponse)
async def run_sync_batch(
    request: RunBatchRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> BatchResponse:
    """Run one bounded batch of the full walk.

    Call repeatedly until ``done`` is true.
    """
    folder_budget = request.folder_budget if request else None
    try:
        result = await engine.run_sync_batch(user_id, folder_budget)
    except DriveSyncError as e:
        raise drive_http_error(e) from e
    return BatchResponse(**result.to_dict())


@router.post("/sync/background", response_model=BackgroundSyncResponse, status_code=202)
async def start_background(
    request: RunBatchRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    client_factory: ClientFactory = Depends(get_client_factory),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> BackgroundSyncResponse:
    """Run batches in the background until done, then reconcile."""
    started = start_background_sync(
        user_id,
        folder_budget=request.folder_budget if request else None,
        client_factory=client_factory,
        session_factory=session_factory,
    )
    if started:
        logger.info("background_sync_requested", user_id=user_id)
    return BackgroundSyncResponse(started=started, already_running=not started)


@router.post("/sync/finalize", response_model=FinalizeResponse)
async def finalize_sync(
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> FinalizeResponse:
    """Flag items the completed walk did not see as missing."""
    try:
        result = await engine.finalize_sync(user_id)
    except DriveSyncError as e:
        raise drive_http_error(e) from e
    return FinalizeResponse(**result.to_dict())


@router.get("/sync/diagnostics", response_model=DiagnosticsResponse)
async def get_sync_diagnostics(
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> DiagnosticsResponse:
    """Read-only snapshot of settings, state and mirror counts."""
    try:
        diagnostics = await engine.get_sync_diagnostics(user_id)
    except DriveSyncError as e:
        raise drive_http_error(e) from e
    return DiagnosticsResponse(
        **diagnostics.to_dict(),
        background_running=is_background_sync_running(user_id),
    )


# =============================================================================
# Change feed
# =============================================================================


@router.post("/changes/pull", response_model=PullResponse)
async def pull_changes(
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> PullResponse:
    """Apply remote changes since the last pull."""
    try:
        result = await engine.pull_changes(user_id)
    except DriveSyncError as e:
        raise drive_http_error(e) from e
    return PullResponse(**result.to_dict())


@router.get("/changes/peek", response_model=PeekResponse)
async def peek_changes(
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> PeekResponse:
    """Count pending remote changes without applying them."""
    try:
        result = await engine.peek_changes(user_id)
    except DriveSyncError as e:
        raise drive_http_error(e) from e
    return PeekResponse(**result.to_dict())


# =============================================================================
# Orphans
# =============================================================================


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    include_acknowledged: bool = False,
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> NotificationListResponse:
    """List orphan notifications, newest first."""
    notifications = await engine.mirror.list_notifications(
        user_id, include_acknowledged=include_acknowledged
    )
    items = [NotificationResponse.model_validate(n) for n in notifications]
    return NotificationListResponse(items=items, total=len(items))


@router.post("/notifications/{notification_id}/ack", response_model=NotificationResponse)
async def acknowledge_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> NotificationResponse:
    """Mark a notification as seen."""
    notification = await engine.mirror.acknowledge_notification(user_id, notification_id)
    if notification is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "NOTIFICATION_NOT_FOUND", "message": "Notification not found"},
        )
    return NotificationResponse.model_validate(notification)


@router.post("/orphans/purge", response_model=PurgeResponse)
async def purge_orphans(
    user_id: str = Depends(get_current_user_id),
    engine: SyncEngine = Depends(get_sync_engine),
) -> PurgeResponse:
    """Apply the user's orphan retention, if auto-deletion is enabled."""
    try:
        result = await engine.purge_orphans(user_id)
    except DriveSyncError as e:
        raise drive_http_error(e) from e
    return PurgeResponse(**result.to_dict())
