"""API v1 router that aggregates all sub-routers."""

from fastapi import APIRouter

from app.api.v1.client_view import router as client_view_router
from app.api.v1.storage import router as storage_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(storage_router)
api_router.include_router(client_view_router)
