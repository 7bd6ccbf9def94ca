"""
Cloudinary media storage adapter.
Uploads and deletions go through the signed upload API; stat, listing and
folders through the Admin API with basic auth. Each object lives under one
resource type (image, video or raw) picked from its file name.
"""

import hashlib
import logging
import time
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from app.config import get_settings
from app.core.exceptions import (
    ObjectNotFoundException,
    StorageAPIException,
    StorageException,
    ValidationException,
)
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, FolderInfo, UploadResult
from app.storage.base import basename, guess_content_type, normalize_path, to_key
from app.storage.http import HttpStorageAdapter

logger = logging.getLogger(__name__)
settings = get_settings()

RESOURCE_TYPES = ("image", "video", "raw")
LIST_PAGE_SIZE = 500


def resource_type(path: str) -> str:
    """Cloudinary resource type for a file name."""
    content_type = guess_content_type(path)
    if content_type.startswith("image/"):
        return "image"
    if content_type.startswith(("video/", "audio/")):
        return "video"
    return "raw"


def public_id(path: str) -> str:
    """Public id of a logical path; image and video ids carry no extension."""
    key = to_key(path)
    if resource_type(path) == "raw":
        return key
    return key.rsplit(".", 1)[0]


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class CloudinaryAdapter(HttpStorageAdapter):
    """
    Cloudinary CDN media host.

    Config:
        cloudName: Product environment cloud name
        apiKey / apiSecret: API credentials
    """

    kind = BackendKind.CLOUDINARY
    display_name = "Cloudinary"

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, name, http_client)
        self._require("cloudName", "apiKey", "apiSecret")

        self.cloud_name = self.config["cloudName"]
        self.api_key = self.config["apiKey"]
        self.api_secret = self.config["apiSecret"]
        self.api_base = f"{settings.CLOUDINARY_API_URL}/{self.cloud_name}"
        self.delivery_base = f"{settings.CLOUDINARY_DELIVERY_URL}/{self.cloud_name}"

    # ===================
    # Signing
    # ===================

    def sign(self, params: dict[str, str]) -> str:
        """SHA-1 hex of the sorted ``key=value`` pairs followed by the API secret."""
        to_sign = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
        return hashlib.sha1((to_sign + self.api_secret).encode()).hexdigest()

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        params = {**params, "timestamp": str(int(time.time()))}
        return {**params, "api_key": self.api_key, "signature": self.sign(params)}

    async def _admin(
        self,
        method: str,
        endpoint: str,
        path: str | None = None,
        allow_status: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        return await self._request(
            method,
            f"{self.api_base}/{endpoint}",
            path=path,
            allow_status=allow_status,
            auth=(self.api_key, self.api_secret),
            **kwargs,
        )

    async def _resources(self, rtype: str, prefix: str) -> list[dict[str, Any]]:
        """Every resource of one type whose public id starts with ``prefix``."""
        resources: list[dict[str, Any]] = []
        cursor = ""

        while True:
            params = {"prefix": prefix, "max_results": LIST_PAGE_SIZE}
            if cursor:
                params["next_cursor"] = cursor
            response = await self._admin("GET", f"resources/{rtype}/upload", prefix, params=params)
            body = self._json(response, prefix)
            resources.extend(body.get("resources") or [])

            cursor = body.get("next_cursor") or ""
            if not cursor:
                return resources

    def _file_info(self, resource: dict[str, Any]) -> FileInfo:
        key = resource["public_id"]
        if resource.get("resource_type") != "raw" and resource.get("format"):
            key = f"{key}.{resource['format']}"
        return FileInfo(
            name=key.rsplit("/", 1)[-1],
            path=normalize_path(key),
            size=resource.get("bytes", 0),
            last_modified=_parse_time(resource.get("created_at")),
            etag=resource.get("etag"),
            content_type=guess_content_type(key),
        )

    # ===================
    # Lifecycle
    # ===================

    async def test_connection(self) -> bool:
        try:
            body = self._json(await self._admin("GET", "ping"))
            return body.get("status") == "ok"
        except StorageAPIException as e:
            logger.warning("Cloudinary connection test failed for %s: %s", self.name, e.message)
            return False
        except Exception:
            logger.exception("Cloudinary connection test raised for %s", self.name)
            return False

    # ===================
    # Object operations
    # ===================

    async def _upload_file(self, file: Any, path: str) -> dict[str, Any]:
        form = self._signed({"public_id": public_id(path), "overwrite": "true"})
        kwargs: dict[str, Any] = {"data": form}
        if isinstance(file, bytes):
            kwargs["files"] = {"file": (basename(path), file, guess_content_type(path))}
        else:
            # Remote URL, fetched by Cloudinary itself
            kwargs["data"] = {**form, "file": file}

        response = await self._request(
            "POST",
            f"{self.api_base}/{resource_type(path)}/upload",
            path=path,
            **kwargs,
        )
        return self._json(response, path)

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        body = await self._upload_file(data, path)

        return UploadResult.ok(
            path=path,
            size=body.get("bytes", len(data)),
            url=body.get("secure_url") or self.get_url(path),
            hash=hashlib.md5(data).hexdigest(),
            metadata={
                "publicId": body.get("public_id"),
                "resourceType": body.get("resource_type"),
                "version": body.get("version"),
                "etag": body.get("etag"),
            },
        )

    async def download(self, path: str) -> bytes:
        response = await self._request("GET", self.get_url(path), path=path)
        return response.content

    async def delete(self, path: str) -> bool:
        response = await self._request(
            "POST",
            f"{self.api_base}/{resource_type(path)}/destroy",
            path=path,
            data=self._signed({"public_id": public_id(path), "invalidate": "true"}),
        )
        result = self._json(response, path).get("result")
        if result == "not found":
            return False
        if result != "ok":
            raise StorageException(
                message=f"Cloudinary destroy failed: {result}",
                details={"backend": self.display_name, "path": path},
            )
        return True

    async def get_file_info(self, path: str) -> FileInfo:
        response = await self._admin(
            "GET",
            f"resources/{resource_type(path)}/upload/{quote(public_id(path))}",
            path,
        )
        return self._file_info(self._json(response, path))

    async def move_file(self, source_path: str, target_path: str) -> None:
        if resource_type(source_path) != resource_type(target_path):
            raise ValidationException(
                f"Cannot move {source_path} to {target_path}: resource types differ",
                details={"sourcePath": source_path, "targetPath": target_path},
            )
        await self._request(
            "POST",
            f"{self.api_base}/{resource_type(source_path)}/rename",
            path=source_path,
            data=self._signed({
                "from_public_id": public_id(source_path),
                "to_public_id": public_id(target_path),
                "overwrite": "true",
            }),
        )

    async def copy_file(self, source_path: str, target_path: str) -> None:
        await self._upload_file(self.get_url(source_path), target_path)

    def get_url(self, path: str) -> str:
        return f"{self.delivery_base}/{resource_type(path)}/upload/{to_key(path)}"

    # ===================
    # Folder operations
    # ===================

    async def create_folder(self, path: str) -> None:
        key = to_key(path)
        if key:
            await self._admin("POST", f"folders/{quote(key)}", path)

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        key = to_key(path)
        prefix = f"{key}/"
        resources = [r for rtype in RESOURCE_TYPES for r in await self._resources(rtype, prefix)]

        if resources and not recursive:
            raise StorageException(
                message=f"Folder is not empty: {path}",
                details={"path": path, "objects": len(resources)},
            )
        for rtype in RESOURCE_TYPES:
            if any(r.get("resource_type") == rtype for r in resources):
                await self._admin(
                    "DELETE", f"resources/{rtype}/upload", path, params={"prefix": prefix}
                )
        await self._admin("DELETE", f"folders/{quote(key)}", path, allow_status=(404,))

    async def move_folder(self, source_path: str, target_path: str) -> None:
        await self._admin(
            "PUT",
            f"folders/{quote(to_key(source_path))}",
            source_path,
            data={"to_folder": to_key(target_path)},
        )

    async def list_folder(self, path: str) -> FolderContents:
        key = to_key(path)
        prefix = f"{key}/" if key else ""

        response = await self._admin(
            "GET", f"folders/{quote(key)}" if key else "folders", path, allow_status=(404,)
        )
        if response.status_code == 404:
            return FolderContents.build([], [])
        subfolders = self._json(response, path).get("folders") or []

        files = [
            self._file_info(r)
            for rtype in RESOURCE_TYPES
            for r in await self._resources(rtype, prefix)
            if "/" not in r["public_id"][len(prefix):]
        ]
        folders = [FolderInfo(name=f["name"], path=normalize_path(f["path"])) for f in subfolders]
        return FolderContents.build(files, folders)

    async def folder_exists(self, path: str) -> bool:
        key = to_key(path)
        if not key:
            return True
        response = await self._admin("GET", f"folders/{quote(key)}", path, allow_status=(404,))
        return response.status_code != 404
