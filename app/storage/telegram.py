"""
Telegram bot storage adapter.
Objects are posted as documents to a chat. The bot API addresses stored
objects by ``file_id`` only, so there is no delete, listing or folders.
"""

import hashlib
import logging
from typing import Any

import httpx

from app.config import get_settings
from app.core.exceptions import (
    ObjectNotFoundException,
    StorageAPIException,
    StorageException,
)
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, UploadResult
from app.storage.base import basename, normalize_path
from app.storage.http import HttpStorageAdapter

logger = logging.getLogger(__name__)
settings = get_settings()

# Bot API limit for documents sent by a bot
TELEGRAM_MAX_FILE_SIZE = 50 * 1024 * 1024


class TelegramAdapter(HttpStorageAdapter):
    """
    Telegram bot/channel storage.

    Config:
        botToken: Bot API token
        chatId: Chat or channel receiving the documents

    The path returned by an upload is the Telegram ``file_id``; it is the
    only handle accepted by ``download`` and ``get_file_info``.
    """

    kind = BackendKind.TELEGRAM
    display_name = "Telegram"
    max_file_size = TELEGRAM_MAX_FILE_SIZE

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, name, http_client)
        self._require("botToken", "chatId")

        self.bot_token = self.config["botToken"]
        self.chat_id = str(self.config["chatId"])
        self.api_base = f"{settings.TELEGRAM_API_URL}/bot{self.bot_token}"
        self.file_base = f"{settings.TELEGRAM_API_URL}/file/bot{self.bot_token}"

    @staticmethod
    def _file_id(path: str) -> str:
        return path.strip("/")

    async def _call(self, method: str, path: str | None = None, **kwargs: Any) -> Any:
        """Invoke a bot API method and return its ``result`` payload."""
        response = await self._request(
            "POST",
            f"{self.api_base}/{method}",
            path=path,
            allow_status=(400,),
            **kwargs,
        )
        body = self._json(response, path)

        if not body.get("ok"):
            description = body.get("description", "unknown error")
            if path is not None and "file" in description.lower():
                raise ObjectNotFoundException(path, details={"backend": self.display_name})
            raise StorageException(
                message=f"Telegram {method} failed: {description}",
                details={"backend": self.display_name, "method": method},
            )
        return body["result"]

    # ===================
    # Lifecycle
    # ===================

    async def test_connection(self) -> bool:
        try:
            me = await self._call("getMe")
            return bool(me.get("is_bot"))
        except StorageAPIException as e:
            logger.warning("Telegram connection test failed for %s: %s", self.name, e.message)
            return False
        except Exception:
            logger.exception("Telegram connection test raised for %s", self.name)
            return False

    # ===================
    # Object operations
    # ===================

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        message = await self._call(
            "sendDocument",
            data={"chat_id": self.chat_id, "caption": path},
            files={"document": (basename(path), data, content_type)},
        )
        document = message.get("document") or {}
        file_id = document.get("file_id")
        if not file_id:
            raise StorageException(
                message="Telegram response did not include a file_id",
                details={"backend": self.display_name, "path": path},
            )

        return UploadResult.ok(
            path=file_id,
            size=document.get("file_size", len(data)),
            url=self.get_url(file_id),
            hash=hashlib.md5(data).hexdigest(),
            metadata={
                "logicalPath": path,
                "messageId": message.get("message_id"),
                "fileUniqueId": document.get("file_unique_id"),
            },
        )

    async def _get_file(self, path: str) -> dict[str, Any]:
        return await self._call("getFile", path=path, data={"file_id": self._file_id(path)})

    async def download(self, path: str) -> bytes:
        file = await self._get_file(path)
        response = await self._request("GET", f"{self.file_base}/{file['file_path']}", path=path)
        return response.content

    async def get_file_info(self, path: str) -> FileInfo:
        file = await self._get_file(path)
        file_path = file.get("file_path", "")
        return FileInfo(
            name=file_path.rsplit("/", 1)[-1] or self._file_id(path),
            path=self._file_id(path),
            size=file.get("file_size", 0),
            etag=file.get("file_unique_id"),
        )

    async def delete(self, path: str) -> bool:
        raise self._unsupported("delete")

    async def move_file(self, source_path: str, target_path: str) -> None:
        raise self._unsupported("move")

    async def copy_file(self, source_path: str, target_path: str) -> None:
        raise self._unsupported("copy")

    def get_url(self, path: str) -> str:
        # Resolved to a downloadable file path through getFile
        return f"{self.api_base}/getFile?file_id={self._file_id(path)}"

    # ===================
    # Folder operations
    # ===================

    async def create_folder(self, path: str) -> None:
        raise self._unsupported("folders")

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        raise self._unsupported("folders")

    async def move_folder(self, source_path: str, target_path: str) -> None:
        raise self._unsupported("folders")

    async def list_folder(self, path: str) -> FolderContents:
        raise self._unsupported("listing")

    async def folder_exists(self, path: str) -> bool:
        # Nothing is ever stored under a folder here
        return normalize_path(path) == "/"
