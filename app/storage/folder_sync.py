"""
Folder synchronisation across storage sources.

Every backend keeps its own folder tree, so folder changes are mirrored by
fanning the same operation out to every active source. The mirror is best
effort: one backend failing never rolls back the others, and the result
names every backend that failed.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from app.core.exceptions import StorageAPIException, ValidationException
from app.schemas.storage import (
    FolderInfo,
    MergedFolderContents,
    SourceFileInfo,
    SourceStatus,
    SourceSyncResult,
    SyncResult,
)
from app.storage.base import StorageAdapter, normalize_path
from app.storage.manager import PoolEntry, PoolFailure, StorageManager

logger = logging.getLogger(__name__)

FolderOperation = Callable[[StorageAdapter], Awaitable[None]]


def _error_message(error: Exception) -> str:
    return error.message if isinstance(error, StorageAPIException) else str(error) or type(error).__name__


def _priority_key(item: PoolEntry | PoolFailure) -> tuple[int, int]:
    return -item.descriptor.priority, item.descriptor.id


class FolderSyncEngine:
    """Mirrors folder create/rename/delete and merges listings across sources."""

    def __init__(self, manager: StorageManager):
        self.manager = manager

    async def _apply(self, entry: PoolEntry, action: str, operation: FolderOperation) -> SourceSyncResult:
        descriptor = entry.descriptor
        try:
            await operation(entry.adapter)
        except Exception as e:
            logger.warning(
                "Folder %s failed on storage source %s (%s): %s",
                action, descriptor.id, descriptor.name, _error_message(e),
            )
            return SourceSyncResult(
                source_id=descriptor.id,
                source_name=descriptor.name,
                success=False,
                error=_error_message(e),
            )
        return SourceSyncResult(source_id=descriptor.id, source_name=descriptor.name, success=True)

    async def _fan_out(self, action: str, operation: FolderOperation) -> SyncResult:
        pool = await self.manager.load_pool()
        items = sorted([*pool.entries, *pool.failures], key=_priority_key)

        async def run(item: PoolEntry | PoolFailure) -> SourceSyncResult:
            if isinstance(item, PoolFailure):
                return SourceSyncResult(
                    source_id=item.descriptor.id,
                    source_name=item.descriptor.name,
                    success=False,
                    error=item.error,
                )
            return await self._apply(item, action, operation)

        results = await asyncio.gather(*(run(item) for item in items))
        sync = SyncResult.from_results(list(results))
        if not sync.success:
            logger.warning(
                "Folder %s incomplete: %d of %d sources failed",
                action, len(sync.failed_sources), sync.affected_sources,
            )
        return sync

    async def create_folder_across_sources(self, path: str) -> SyncResult:
        """Create ``path`` (and any missing ancestors) on every active source."""
        path = normalize_path(path)
        if path == "/":
            raise ValidationException("The root folder always exists", details={"path": path})

        async def create(adapter: StorageAdapter) -> None:
            await adapter.ensure_folder_path(path)

        return await self._fan_out("create", create)

    async def rename_folder_across_sources(self, old_path: str, new_path: str) -> SyncResult:
        """
        Rename a folder on every active source.

        A source that never held ``old_path`` gets ``new_path`` created
        directly instead of reporting an error.
        """
        old_path = normalize_path(old_path)
        new_path = normalize_path(new_path)
        if "/" in (old_path, new_path):
            raise ValidationException("The root folder cannot be renamed")
        if old_path == new_path or new_path.startswith(old_path + "/"):
            raise ValidationException(
                f"Cannot move {old_path} into {new_path}",
                details={"oldPath": old_path, "newPath": new_path},
            )

        async def rename(adapter: StorageAdapter) -> None:
            if await adapter.folder_exists(old_path):
                await adapter.move_folder(old_path, new_path)
            else:
                await adapter.ensure_folder_path(new_path)

        return await self._fan_out("rename", rename)

    async def delete_folder_across_sources(self, path: str, recursive: bool = False) -> SyncResult:
        """Delete a folder on every active source. Absent folders count as deleted."""
        path = normalize_path(path)
        if path == "/":
            raise ValidationException("The root folder cannot be deleted")

        async def delete(adapter: StorageAdapter) -> None:
            if await adapter.folder_exists(path):
                await adapter.delete_folder(path, recursive=recursive)

        return await self._fan_out("delete", delete)

    async def merge_folder_contents(self, path: str) -> MergedFolderContents:
        """
        Union of every active source's listing of ``path``.

        Files are tagged with their source and never de-duplicated. Folders
        are de-duplicated by path, the highest-priority source winning.
        """
        path = normalize_path(path)
        pool = await self.manager.load_pool()
        entries = sorted(pool.entries, key=_priority_key)

        listings = await asyncio.gather(
            *(e.adapter.list_folder(path) for e in entries),
            return_exceptions=True,
        )

        merged = MergedFolderContents(sources_queried=len(entries) + len(pool.failures))
        seen_folders: dict[str, FolderInfo] = {}

        for entry, listing in zip(entries, listings):
            descriptor = entry.descriptor
            if isinstance(listing, BaseException):
                if not isinstance(listing, Exception):
                    raise listing
                logger.warning(
                    "Listing %s failed on storage source %s (%s): %s",
                    path, descriptor.id, descriptor.name, _error_message(listing),
                )
                merged.source_status.append(SourceStatus(
                    source_id=descriptor.id,
                    source_name=descriptor.name,
                    status="error",
                    error=_error_message(listing),
                ))
                continue

            merged.files.extend(
                SourceFileInfo(
                    **f.model_dump(),
                    source_id=descriptor.id,
                    source_name=descriptor.name,
                    source_kind=descriptor.kind,
                )
                for f in listing.files
            )
            for folder in listing.folders:
                seen_folders.setdefault(normalize_path(folder.path), folder)

            merged.source_status.append(SourceStatus(
                source_id=descriptor.id,
                source_name=descriptor.name,
                status="online",
                file_count=len(listing.files),
                folder_count=len(listing.folders),
            ))
            merged.sources_online += 1

        for failure in pool.failures:
            merged.source_status.append(SourceStatus(
                source_id=failure.descriptor.id,
                source_name=failure.descriptor.name,
                status="error",
                error=failure.error,
            ))

        merged.folders = list(seen_folders.values())
        merged.total_files = len(merged.files)
        merged.total_size = sum(f.size for f in merged.files)
        return merged
