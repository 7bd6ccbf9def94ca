"""
API v1 Router - Aggregates all v1 endpoints.
Base Path: /api/v1
"""

from fastapi import APIRouter

from app.api.v1 import files, folders, health, storage_sources
from app.schemas.error import ErrorResponse

api_router = APIRouter()

# Error bodies produced by the StorageAPIException handler
ERROR_RESPONSES = {
    status: {"model": ErrorResponse}
    for status in (400, 404, 413, 500, 501, 502, 503, 507)
}

# Include endpoint routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(
    storage_sources.router,
    prefix="/storage-sources",
    tags=["storage-sources"],
    responses=ERROR_RESPONSES,
)
api_router.include_router(folders.router, prefix="/folders", tags=["folders"], responses=ERROR_RESPONSES)
api_router.include_router(files.router, prefix="/files", tags=["files"], responses=ERROR_RESPONSES)
