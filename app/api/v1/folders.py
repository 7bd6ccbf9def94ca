"""
Folder endpoints.
Every call fans out to all active storage sources and reports a per-source
outcome.
"""

from fastapi import APIRouter, Query

from app.dependencies import FolderSync
from app.schemas.storage import (
    FolderCreateRequest,
    FolderRenameRequest,
    MergedFolderContents,
    SyncResult,
)

router = APIRouter()


@router.post("", response_model=SyncResult, status_code=201)
async def create_folder(data: FolderCreateRequest, sync: FolderSync):
    """Create a folder, including missing parents, on every active source."""
    return await sync.create_folder_across_sources(data.path)


@router.patch("", response_model=SyncResult)
async def rename_folder(data: FolderRenameRequest, sync: FolderSync):
    """
    Rename a folder on every active source.

    Sources that never held the old folder get the new one created instead.
    """
    return await sync.rename_folder_across_sources(data.old_path, data.new_path)


@router.delete("", response_model=SyncResult)
async def delete_folder(
    sync: FolderSync,
    path: str = Query(..., min_length=1, description="Folder to delete"),
    recursive: bool = Query(default=False, description="Delete contents as well"),
):
    """Delete a folder on every active source. Missing folders count as deleted."""
    return await sync.delete_folder_across_sources(path, recursive=recursive)


@router.get("/contents", response_model=MergedFolderContents)
async def list_folder_contents(
    sync: FolderSync,
    path: str = Query(default="/", description="Folder to list"),
):
    """
    Merged listing of a folder across all active sources.

    Files carry the source they came from; unreachable sources are reported
    in ``sourceStatus`` instead of failing the request.
    """
    return await sync.merge_folder_contents(path)
