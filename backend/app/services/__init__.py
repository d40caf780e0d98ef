"""Business logic services for DriveSync."""

from app.services.drive_changes import DeltaPuller, PeekResult, PullResult
from app.services.drive_indexer import DriveIndexer
from app.services.drive_sync import BatchResult, SyncRunner
from app.services.mirror import MirrorRepository
from app.services.reconciler import PurgeResult, ReconcileResult, Reconciler
from app.services.sync_engine import SyncDiagnostics, SyncEngine
from app.services.token_vault import CredentialVault, TokenSealer

__all__ = [
    "BatchResult",
    "CredentialVault",
    "DeltaPuller",
    "DriveIndexer",
    "MirrorRepository",
    "PeekResult",
    "PullResult",
    "PurgeResult",
    "ReconcileResult",
    "Reconciler",
    "SyncDiagnostics",
    "SyncEngine",
    "SyncRunner",
    "TokenSealer",
]
