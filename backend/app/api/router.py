"""API router that aggregates all routes."""

from fastapi import APIRouter

from app.api.routes import health, sync

api_router = APIRouter(prefix="/api")

# Include route modules
api_router.include_router(health.router)

# V1 API routes
v1_router = APIRouter(prefix="/v1")
v1_router.include_router(sync.router)

api_router.include_router(v1_router)
