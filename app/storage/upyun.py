"""
Upyun USS storage adapter.
Talks to the REST API with ``UPYUN`` request signing. Unlike the other
object stores, USS keeps real directories, so folders map onto its own
mkdir/rmdir and listings come back per directory.
"""

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from email.utils import formatdate
from typing import Any
from urllib.parse import quote

import httpx

from app.config import get_settings
from app.core.exceptions import (
    ObjectNotFoundException,
    StorageAPIException,
    StorageException,
)
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, FolderInfo, UploadResult
from app.storage.base import basename, normalize_path, to_key
from app.storage.http import HttpStorageAdapter

logger = logging.getLogger(__name__)
settings = get_settings()

# Iterator value returned with the last page of a listing
LIST_END = "g2gCZAAEbmV4dGQAA2VvZg"
LIST_PAGE_SIZE = 1000


def _timestamp(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


class UpyunAdapter(HttpStorageAdapter):
    """
    Upyun regional CDN object storage.

    Config:
        bucket: Service (bucket) name
        operator / password: Operator credentials
        domain: CDN domain serving the bucket
        apiDomain: REST API host (default v0.api.upyun.com)
        protocol: Scheme for public URLs when the domain has none (default https)
    """

    kind = BackendKind.UPYUN
    display_name = "Upyun"

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, name, http_client)
        self._require("bucket", "operator", "password", "domain")

        self.bucket = self.config["bucket"].strip()
        self.operator = self.config["operator"].strip()
        self.password_md5 = hashlib.md5(self.config["password"].strip().encode()).hexdigest()

        api_domain = self.config.get("apiDomain")
        if api_domain:
            self.api_url = api_domain if api_domain.startswith("http") else f"https://{api_domain}"
        else:
            self.api_url = settings.UPYUN_API_URL
        self.api_url = self.api_url.rstrip("/")

        domain = self.config["domain"].strip().strip("`'\"").rstrip("/")
        protocol = self.config.get("protocol") or "https"
        self.domain = domain if domain.startswith("http") else f"{protocol}://{domain}"

    # ===================
    # Signing
    # ===================

    def authorization(self, method: str, uri: str, date: str, content_md5: str = "") -> str:
        """``UPYUN operator:signature`` over ``METHOD&URI&Date[&Content-MD5]``."""
        parts = [method, uri, date]
        if content_md5:
            parts.append(content_md5)
        digest = hmac.new(
            self.password_md5.encode(),
            "&".join(parts).encode(),
            hashlib.sha1,
        ).digest()
        return f"UPYUN {self.operator}:{base64.b64encode(digest).decode()}"

    def _uri(self, path: str, folder: bool = False) -> str:
        key = to_key(path)
        uri = f"/{self.bucket}/{quote(key)}"
        if folder and key:
            uri += "/"
        return uri

    async def _call(
        self,
        method: str,
        uri: str,
        path: str | None = None,
        headers: dict[str, str] | None = None,
        allow_status: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        headers = dict(headers or {})
        date = formatdate(usegmt=True)
        headers["Date"] = date
        headers["Authorization"] = self.authorization(
            method, uri, date, headers.get("Content-MD5", "")
        )
        return await self._request(
            method,
            self.api_url + uri,
            path=path,
            allow_status=allow_status,
            headers=headers,
            **kwargs,
        )

    async def _list(self, path: str) -> list[dict[str, Any]] | None:
        """Direct children of a directory, None when it does not exist."""
        items: list[dict[str, Any]] = []
        iterator = ""

        while True:
            headers = {"Accept": "application/json", "x-list-limit": str(LIST_PAGE_SIZE)}
            if iterator:
                headers["x-list-iter"] = iterator
            response = await self._call(
                "GET", self._uri(path, folder=True), path, headers=headers, allow_status=(404,)
            )
            if response.status_code == 404:
                return None

            body = self._json(response, path)
            items.extend(body.get("files") or [])
            iterator = body.get("iter") or ""
            if not iterator or iterator == LIST_END:
                return items

    @staticmethod
    def _child(path: str, name: str) -> str:
        return normalize_path(f"{path}/{name}")

    # ===================
    # Lifecycle
    # ===================

    async def test_connection(self) -> bool:
        try:
            await self._call("GET", self._uri("/", folder=True), params={"usage": ""})
            return True
        except StorageAPIException as e:
            logger.warning("Upyun connection test failed for %s: %s", self.name, e.message)
            return False
        except Exception:
            logger.exception("Upyun connection test raised for %s", self.name)
            return False

    # ===================
    # Object operations
    # ===================

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        digest = hashlib.md5(data).hexdigest()
        response = await self._call(
            "PUT",
            self._uri(path),
            path,
            headers={"Content-Type": content_type, "Content-MD5": digest},
            content=data,
        )

        return UploadResult.ok(
            path=path,
            size=len(data),
            url=self.get_url(path),
            hash=digest,
            metadata={"etag": response.headers.get("etag")},
        )

    async def download(self, path: str) -> bytes:
        response = await self._call("GET", self._uri(path), path)
        return response.content

    async def delete(self, path: str) -> bool:
        response = await self._call("DELETE", self._uri(path), path, allow_status=(404,))
        return response.status_code != 404

    async def get_file_info(self, path: str) -> FileInfo:
        response = await self._call("HEAD", self._uri(path), path)
        headers = response.headers
        if headers.get("x-upyun-file-type") == "folder":
            raise ObjectNotFoundException(path, details={"backend": self.display_name})

        return FileInfo(
            name=basename(path),
            path=normalize_path(path),
            size=int(headers.get("x-upyun-file-size", 0)),
            last_modified=_timestamp(headers.get("x-upyun-file-date")),
            etag=headers.get("content-md5"),
            content_type=headers.get("content-type"),
        )

    async def _transfer(self, header: str, source_path: str, target_path: str) -> None:
        await self._call(
            "PUT",
            self._uri(target_path),
            source_path,
            headers={header: self._uri(source_path)},
            content=b"",
        )

    async def move_file(self, source_path: str, target_path: str) -> None:
        await self._transfer("X-Upyun-Move-Source", source_path, target_path)

    async def copy_file(self, source_path: str, target_path: str) -> None:
        await self._transfer("X-Upyun-Copy-Source", source_path, target_path)

    def get_url(self, path: str) -> str:
        return f"{self.domain}/{to_key(path)}"

    # ===================
    # Folder operations
    # ===================

    async def create_folder(self, path: str) -> None:
        if not to_key(path):
            return
        await self._call("POST", self._uri(path), path, headers={"folder": "true"})

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        items = await self._list(path)
        if items is None:
            return
        if items and not recursive:
            raise StorageException(
                message=f"Folder is not empty: {path}",
                details={"path": path, "objects": len(items)},
            )

        for item in items:
            child = self._child(path, item["name"])
            if item.get("type") == "folder":
                await self.delete_folder(child, recursive=True)
            else:
                await self._call("DELETE", self._uri(child), child, allow_status=(404,))
        await self._call("DELETE", self._uri(path), path, allow_status=(404,))

    async def move_folder(self, source_path: str, target_path: str) -> None:
        # USS has no directory rename; children move one by one
        items = await self._list(source_path)
        if items is None:
            raise ObjectNotFoundException(source_path)

        await self.create_folder(target_path)
        for item in items:
            source = self._child(source_path, item["name"])
            target = self._child(target_path, item["name"])
            if item.get("type") == "folder":
                await self.move_folder(source, target)
            else:
                await self.move_file(source, target)
        await self._call("DELETE", self._uri(source_path), source_path, allow_status=(404,))

    async def list_folder(self, path: str) -> FolderContents:
        items = await self._list(path) or []

        files = [
            FileInfo(
                name=item["name"],
                path=self._child(path, item["name"]),
                size=item.get("length", 0),
                last_modified=_timestamp(item.get("last_modified")),
                etag=item.get("etag"),
                content_type=item.get("type"),
            )
            for item in items
            if item.get("type") != "folder"
        ]
        folders = [
            FolderInfo(
                name=item["name"],
                path=self._child(path, item["name"]),
                last_modified=_timestamp(item.get("last_modified")),
            )
            for item in items
            if item.get("type") == "folder"
        ]
        return FolderContents.build(files, folders)

    async def folder_exists(self, path: str) -> bool:
        if not to_key(path):
            return True
        response = await self._call("HEAD", self._uri(path), path, allow_status=(404,))
        return (
            response.status_code != 404
            and response.headers.get("x-upyun-file-type") == "folder"
        )
