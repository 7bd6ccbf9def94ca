"""
Local filesystem storage adapter.
Stores objects on disk under a configured base path. Folders are real
directories.
"""

import asyncio
import hashlib
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator

import aiofiles
import aiofiles.os

from app.config import get_settings
from app.core.exceptions import (
    ObjectNotFoundException,
    PermissionDeniedException,
    StorageAPIException,
    StorageException,
)
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, FolderInfo, UploadResult
from app.storage.base import StorageAdapter, guess_content_type, normalize_path, to_key

logger = logging.getLogger(__name__)
settings = get_settings()


def _mtime(stat: os.stat_result) -> datetime:
    return datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)


class LocalStorageAdapter(StorageAdapter):
    """
    Local filesystem storage implementation.

    Config:
        basePath: Root directory for stored objects
        maxFileSize: Optional per-file limit in bytes (default 100MB)
    """

    kind = BackendKind.LOCAL
    display_name = "Local Storage"

    def __init__(self, config: dict[str, Any], name: str | None = None):
        super().__init__(config, name)
        # Older descriptors stored the directory under "path"
        if not self.config.get("basePath") and self.config.get("path"):
            self.config["basePath"] = self.config["path"]
        self._require("basePath")

        self.base_path = Path(self.config["basePath"]).resolve()
        self.max_file_size = int(
            self.config.get("maxFileSize") or settings.DEFAULT_LOCAL_MAX_FILE_SIZE
        )

    def _get_full_path(self, path: str) -> Path:
        """Get full filesystem path for a logical path."""
        return self.base_path / to_key(path)

    def _os_error(self, action: str, path: str, error: OSError) -> StorageAPIException:
        if isinstance(error, PermissionError):
            return PermissionDeniedException(
                f"Permission denied while trying to {action}: {path}",
                details={"path": path},
            )
        return StorageException(
            message=f"Failed to {action}: {error}",
            details={"path": path},
        )

    async def connect(self) -> None:
        await aiofiles.os.makedirs(self.base_path, exist_ok=True)

    async def disconnect(self) -> None:
        pass

    async def test_connection(self) -> bool:
        marker = self.base_path / ".write-test"
        try:
            async with aiofiles.open(marker, "w") as f:
                await f.write("test")
            await aiofiles.os.remove(marker)
            return True
        except OSError as e:
            logger.warning("Local storage write test failed for %s: %s", self.base_path, e)
            return False

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        full_path = self._get_full_path(path)

        try:
            await aiofiles.os.makedirs(full_path.parent, exist_ok=True)
            async with aiofiles.open(full_path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise self._os_error("write file", path, e) from e

        return UploadResult.ok(
            path=path,
            size=len(data),
            url=self.get_url(path),
            hash=hashlib.md5(data).hexdigest(),
        )

    async def download(self, path: str) -> bytes:
        full_path = self._get_full_path(path)

        if not await aiofiles.os.path.isfile(full_path):
            raise ObjectNotFoundException(path)

        try:
            async with aiofiles.open(full_path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise self._os_error("read file", path, e) from e

    async def download_stream(
        self,
        path: str,
        chunk_size: int = 1024 * 1024,
    ) -> AsyncGenerator[bytes, None]:
        full_path = self._get_full_path(path)

        if not await aiofiles.os.path.isfile(full_path):
            raise ObjectNotFoundException(path)

        async with aiofiles.open(full_path, "rb") as f:
            while chunk := await f.read(chunk_size):
                yield chunk

    async def delete(self, path: str) -> bool:
        full_path = self._get_full_path(path)

        if not await aiofiles.os.path.isfile(full_path):
            return False

        # Parent directories stay: they belong to the mirrored folder namespace
        try:
            await aiofiles.os.remove(full_path)
        except OSError as e:
            raise self._os_error("delete file", path, e) from e
        return True

    async def get_file_info(self, path: str) -> FileInfo:
        full_path = self._get_full_path(path)

        if not await aiofiles.os.path.isfile(full_path):
            raise ObjectNotFoundException(path)

        stat = await aiofiles.os.stat(full_path)
        return FileInfo(
            name=full_path.name,
            path=normalize_path(path),
            size=stat.st_size,
            last_modified=_mtime(stat),
            content_type=guess_content_type(full_path.name),
        )

    async def move_file(self, source_path: str, target_path: str) -> None:
        source = self._get_full_path(source_path)
        target = self._get_full_path(target_path)

        if not await aiofiles.os.path.isfile(source):
            raise ObjectNotFoundException(source_path)

        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            await aiofiles.os.replace(source, target)
        except OSError as e:
            raise self._os_error("move file", source_path, e) from e

    async def copy_file(self, source_path: str, target_path: str) -> None:
        source = self._get_full_path(source_path)
        target = self._get_full_path(target_path)

        if not await aiofiles.os.path.isfile(source):
            raise ObjectNotFoundException(source_path)

        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, source, target)
        except OSError as e:
            raise self._os_error("copy file", source_path, e) from e

    def get_url(self, path: str) -> str:
        # Served through the application, not directly
        return f"/storage/{to_key(path)}"

    async def create_folder(self, path: str) -> None:
        try:
            await aiofiles.os.makedirs(self._get_full_path(path), exist_ok=True)
        except OSError as e:
            raise self._os_error("create folder", path, e) from e

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        full_path = self._get_full_path(path)

        if not await aiofiles.os.path.isdir(full_path):
            return

        try:
            if recursive:
                await asyncio.to_thread(shutil.rmtree, full_path)
            else:
                await aiofiles.os.rmdir(full_path)
        except OSError as e:
            if not recursive and full_path.exists() and any(full_path.iterdir()):
                raise StorageException(
                    message=f"Folder is not empty: {path}",
                    details={"path": path},
                ) from e
            raise self._os_error("delete folder", path, e) from e

    async def move_folder(self, source_path: str, target_path: str) -> None:
        source = self._get_full_path(source_path)
        target = self._get_full_path(target_path)

        if not await aiofiles.os.path.isdir(source):
            raise ObjectNotFoundException(source_path)
        if await aiofiles.os.path.exists(target):
            raise StorageException(
                message=f"Target folder already exists: {target_path}",
                details={"source": source_path, "target": target_path},
            )

        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            await aiofiles.os.rename(source, target)
        except OSError as e:
            raise self._os_error("move folder", source_path, e) from e

    def _scan(self, directory: Path, logical: str) -> FolderContents:
        files: list[FileInfo] = []
        folders: list[FolderInfo] = []
        prefix = logical.rstrip("/")

        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.name.startswith(".write-test"):
                    continue
                stat = entry.stat()
                if entry.is_dir():
                    folders.append(FolderInfo(
                        name=entry.name,
                        path=f"{prefix}/{entry.name}",
                        last_modified=_mtime(stat),
                        item_count=len(os.listdir(entry.path)),
                    ))
                elif entry.is_file():
                    files.append(FileInfo(
                        name=entry.name,
                        path=f"{prefix}/{entry.name}",
                        size=stat.st_size,
                        last_modified=_mtime(stat),
                        content_type=guess_content_type(entry.name),
                    ))

        files.sort(key=lambda f: f.name)
        folders.sort(key=lambda f: f.name)
        return FolderContents.build(files, folders)

    async def list_folder(self, path: str) -> FolderContents:
        full_path = self._get_full_path(path)

        if not await aiofiles.os.path.isdir(full_path):
            return FolderContents.build([], [])

        try:
            return await asyncio.to_thread(self._scan, full_path, normalize_path(path))
        except OSError as e:
            raise self._os_error("list folder", path, e) from e

    async def folder_exists(self, path: str) -> bool:
        return await aiofiles.os.path.isdir(self._get_full_path(path))
