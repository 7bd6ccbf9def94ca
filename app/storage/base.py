"""
Abstract storage adapter interface.
Defines the contract every storage backend implements.
"""

import logging
import mimetypes
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator

from app.core.exceptions import (
    ConfigurationException,
    StorageAPIException,
    UnsupportedOperationException,
    ValidationException,
)
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, UploadResult

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """
    Normalize a logical path to ``/a/b`` form.

    Backslashes become slashes, empty segments collapse, trailing slashes are
    dropped. The root is ``/``. Relative segments are rejected.
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    if ".." in parts:
        raise ValidationException(
            message=f"Relative path segments are not allowed: {path}",
            details={"path": path},
        )
    return "/" + "/".join(parts)


def path_prefixes(path: str) -> list[str]:
    """Ordered ancestor chain of a path, ``/a/b/c`` -> ``[/a, /a/b, /a/b/c]``."""
    parts = normalize_path(path).strip("/").split("/")
    return ["/" + "/".join(parts[: i + 1]) for i in range(len(parts)) if parts[i]]


def to_key(path: str) -> str:
    """Object-store key for a logical path (no leading slash, root is empty)."""
    return normalize_path(path).lstrip("/")


def to_folder_key(path: str) -> str:
    """Object-store prefix for a folder, ``/a/b`` -> ``a/b/``, root -> ``""``."""
    key = to_key(path)
    return f"{key}/" if key else ""


def basename(path: str) -> str:
    return normalize_path(path).rsplit("/", 1)[-1]


def guess_content_type(path: str) -> str:
    """Guess a MIME type from the file name."""
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


class StorageAdapter(ABC):
    """
    Abstract base class for storage backends.

    One subclass per backend kind binds this contract to a remote protocol.
    Subclasses validate their configuration in ``__init__`` and raise
    ``ConfigurationException`` immediately when a required field is missing.

    Error policy:
        - ``upload`` reports failure through ``UploadResult`` (see ``upload``).
        - every other operation raises a ``StorageAPIException`` subclass.
        - operations the backend cannot perform raise
          ``UnsupportedOperationException``; they never silently succeed.
    """

    kind: BackendKind
    display_name: str = "Storage"

    # Largest object the backend accepts, None for no limit
    max_file_size: int | None = None

    def __init__(self, config: dict[str, Any], name: str | None = None):
        self.config = dict(config or {})
        self.name = name or self.display_name

    # ===================
    # Configuration helpers
    # ===================

    def _require(self, *fields: str) -> None:
        """Raise ConfigurationException naming every missing required field."""
        missing = [f for f in fields if self.config.get(f) in (None, "")]
        if missing:
            raise ConfigurationException(
                message=f"{self.display_name} configuration missing: {', '.join(missing)}",
                details={"kind": self.kind.value, "missing": missing},
            )

    def _unsupported(self, operation: str) -> UnsupportedOperationException:
        return UnsupportedOperationException(operation, self.display_name)

    # ===================
    # Connection lifecycle
    # ===================

    @abstractmethod
    async def connect(self) -> None:
        """Open clients/sessions. Called once before the adapter is pooled."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release clients/sessions. Safe to call more than once."""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """
        Read-only reachability check.

        Never raises: internal errors are logged and mapped to False.
        """
        pass

    # ===================
    # Object operations
    # ===================

    async def upload(
        self,
        data: bytes,
        path: str,
        content_type: str | None = None,
    ) -> UploadResult:
        """
        Upload raw bytes to storage.

        Args:
            data: File content
            path: Destination logical path (e.g. "/docs/report.pdf")
            content_type: MIME type, guessed from the path when omitted

        Returns:
            UploadResult; on failure ``success`` is False and ``error`` is set
        """
        if self.max_file_size is not None and len(data) > self.max_file_size:
            limit_mb = self.max_file_size / (1024 * 1024)
            return UploadResult.failed(
                f"File size {len(data)} bytes exceeds the {self.name} limit of {limit_mb:.0f}MB"
            )

        try:
            return await self._upload(
                data,
                normalize_path(path),
                content_type or guess_content_type(path),
            )
        except StorageAPIException as e:
            logger.warning("Upload to %s failed for %s: %s", self.name, path, e.message)
            return UploadResult.failed(e.message)
        except Exception as e:
            logger.exception("Upload to %s raised for %s", self.name, path)
            return UploadResult.failed(f"Upload to {self.name} failed: {e}")

    @abstractmethod
    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        """Backend-specific upload. Raises on failure; ``upload`` converts it."""
        pass

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """
        Download an entire object.

        Raises:
            ObjectNotFoundException: If the object does not exist
        """
        pass

    async def download_stream(
        self,
        path: str,
        chunk_size: int = 1024 * 1024,
    ) -> AsyncGenerator[bytes, None]:
        """Stream an object in chunks."""
        data = await self.download(path)
        for start in range(0, len(data), chunk_size):
            yield data[start:start + chunk_size]

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """
        Delete an object.

        Returns:
            True if deleted, False if it did not exist

        Raises:
            UnsupportedOperationException: If the backend cannot delete
        """
        pass

    @abstractmethod
    async def get_file_info(self, path: str) -> FileInfo:
        """
        Stat a single object.

        Raises:
            ObjectNotFoundException: If the object does not exist
        """
        pass

    @abstractmethod
    async def move_file(self, source_path: str, target_path: str) -> None:
        pass

    @abstractmethod
    async def copy_file(self, source_path: str, target_path: str) -> None:
        pass

    @abstractmethod
    def get_url(self, path: str) -> str:
        """URL (public, proxied or API) for accessing an object."""
        pass

    # ===================
    # Folder operations
    # ===================

    @abstractmethod
    async def create_folder(self, path: str) -> None:
        pass

    @abstractmethod
    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        pass

    @abstractmethod
    async def move_folder(self, source_path: str, target_path: str) -> None:
        pass

    @abstractmethod
    async def list_folder(self, path: str) -> FolderContents:
        """List the direct children of a folder."""
        pass

    @abstractmethod
    async def folder_exists(self, path: str) -> bool:
        pass

    async def ensure_folder_path(self, path: str) -> None:
        """
        Make sure every folder along ``path`` exists, creating missing ones.

        Idempotent but not transactional: an interrupted call leaves a
        partial chain that the next call completes.
        """
        for prefix in path_prefixes(path):
            if not await self.folder_exists(prefix):
                await self.create_folder(prefix)

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name={self.name!r})>"
