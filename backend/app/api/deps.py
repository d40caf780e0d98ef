"""Shared FastAPI dependencies for the sync routes."""

from __future__ import annotations

from fastapi import Header, HTTPException

from app.db.session import async_session_maker
from app.drive.client import GoogleDriveClient
from app.services.sync_engine import ClientFactory
from app.workers.background_sync import SessionFactory


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str:
    """Resolve the caller's user ID.

    Authentication happens upstream; the proxy forwards the verified
    identity in ``X-User-Id``.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail={"code": "UNAUTHENTICATED", "message": "Missing X-User-Id header"},
        )
    return x_user_id.strip()


def get_client_factory() -> ClientFactory:
    """Factory that builds Drive clients from access tokens."""
    return GoogleDriveClient


def get_session_factory() -> SessionFactory:
    """Session factory for work that outlives the request."""
    return async_session_maker
