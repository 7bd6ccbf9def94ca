"""
FastAPI dependency injection functions.
Provides common dependencies used across endpoints.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.storage.folder_sync import FolderSyncEngine
from app.storage.manager import StorageManager, get_storage_manager


def get_folder_sync(
    manager: Annotated[StorageManager, Depends(get_storage_manager)],
) -> FolderSyncEngine:
    return FolderSyncEngine(manager)


# Type aliases for cleaner endpoint signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]
Manager = Annotated[StorageManager, Depends(get_storage_manager)]
FolderSync = Annotated[FolderSyncEngine, Depends(get_folder_sync)]
