"""
Storage Federation API - Main Application Entry Point.

Serves one storage contract over many heterogeneous backends: object
upload/download/delete routed by priority or placement policy, and a folder
namespace mirrored across every active backend.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.core.exceptions import StorageAPIException
from app.api.v1.router import api_router
from app.services.metrics import MetricsMiddleware
from app.storage.factory import supported_kinds
from app.storage.manager import get_storage_manager

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting %s", settings.PROJECT_NAME)
    logger.info("Debug mode: %s", settings.DEBUG)
    logger.info("Supported backend kinds: %s", ", ".join(supported_kinds()))

    from app.db.session import engine, is_using_sqlite_fallback

    if is_using_sqlite_fallback():
        logger.warning("[DEV MODE] Using SQLite fallback database")
        logger.info("Creating SQLite development tables...")
        from app.db.base import Base
        # Import models to register them
        from app.models import StorageSource  # noqa: F401
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Development database ready")
    else:
        logger.info("Database: PostgreSQL")

    yield

    # Shutdown
    logger.info("Shutting down %s", settings.PROJECT_NAME)
    await get_storage_manager().close()


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
## Storage Federation API

One storage contract over many heterogeneous backends.

### Features
- **Backends**: Cloudflare R2, MinIO, Qiniu, Telegram, GitHub, custom HTTP sinks, local disk
- **Routing**: Highest-priority backend, explicit backend, or size/type aware placement
- **Folder Mirroring**: Folder create/rename/delete fanned out to every backend
- **Merged Listings**: One folder view across all backends, tagged by origin
- **Quota Ledger**: Per-backend usage tracked on every upload and delete
    """,
    version="1.0.0",
    openapi_tags=[
        {"name": "files", "description": "Object upload, download and delete"},
        {"name": "folders", "description": "Folder operations mirrored across backends"},
        {"name": "storage-sources", "description": "Backend status, tests and cache control"},
        {"name": "health", "description": "Service health checks"},
    ],
    lifespan=lifespan,
)

# CORS middleware for cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request metrics
app.add_middleware(MetricsMiddleware)


@app.exception_handler(StorageAPIException)
async def storage_exception_handler(request: Request, exc: StorageAPIException) -> JSONResponse:
    """
    Global exception handler for storage exceptions.
    Returns standardized error responses.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all exception handler for unexpected errors.
    Logs the full error but returns a sanitized response.
    """
    logger.exception("Unexpected error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
        },
    )


# Include API routers
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint redirects to API documentation."""
    return {
        "name": settings.PROJECT_NAME,
        "version": "1.0.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
        "api": settings.API_V1_PREFIX,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
