"""
Qiniu Kodo storage adapter.
Uploads go to the regional upload host with a signed upload token;
management calls (stat, delete, move, copy, list) go to the rs/rsf hosts
with QBox request signing. Folders are simulated with ``prefix/`` markers.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode, urlsplit

import httpx

from app.config import get_settings
from app.core.exceptions import (
    ConfigurationException,
    ObjectNotFoundException,
    StorageAPIException,
    StorageException,
)
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, FolderInfo, UploadResult
from app.storage.base import to_folder_key, to_key
from app.storage.http import HttpStorageAdapter

logger = logging.getLogger(__name__)
settings = get_settings()

UPLOAD_HOSTS = {
    "z0": "https://upload-z0.qiniup.com",
    "z1": "https://upload-z1.qiniup.com",
    "z2": "https://upload-z2.qiniup.com",
    "na0": "https://upload-na0.qiniup.com",
    "as0": "https://upload-as0.qiniup.com",
}

# Qiniu specific status codes
NO_SUCH_ENTRY = 612
TARGET_EXISTS = 614
NO_SUCH_BUCKET = 631

UPLOAD_TOKEN_TTL = 3600


def urlsafe_b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode()


def encoded_entry(bucket: str, key: str) -> str:
    """EncodedEntryURI for the rs management API."""
    return urlsafe_b64(f"{bucket}:{key}".encode())


class QiniuAdapter(HttpStorageAdapter):
    """
    Qiniu regional CDN object storage.

    Config:
        accessKey / secretKey: API credentials
        bucket: Target bucket
        region: Upload region code, one of z0, z1, z2, na0, as0 (default z0)
        domain: CDN domain serving the bucket
    """

    kind = BackendKind.QINIU
    display_name = "Qiniu"

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, name, http_client)
        self._require("accessKey", "secretKey", "bucket", "domain")

        self.access_key = self.config["accessKey"]
        self.secret_key = self.config["secretKey"]
        self.bucket = self.config["bucket"]
        self.region = self.config.get("region") or "z0"
        if self.region not in UPLOAD_HOSTS:
            raise ConfigurationException(
                message=f"Unknown Qiniu region: {self.region}",
                details={"kind": self.kind.value, "region": self.region},
            )

        domain = self.config["domain"].rstrip("/")
        self.domain = domain if domain.startswith("http") else f"https://{domain}"
        self.upload_host = UPLOAD_HOSTS[self.region]

    # ===================
    # Signing
    # ===================

    def _sign(self, data: str) -> str:
        digest = hmac.new(self.secret_key.encode(), data.encode(), hashlib.sha1).digest()
        return urlsafe_b64(digest)

    def upload_token(self, key: str, deadline: int | None = None) -> str:
        """Upload token ``accessKey:sign(policy):policy`` scoped to one key."""
        policy = {
            "scope": f"{self.bucket}:{key}",
            "deadline": deadline or int(time.time()) + UPLOAD_TOKEN_TTL,
        }
        encoded_policy = urlsafe_b64(json.dumps(policy, separators=(",", ":")).encode())
        return f"{self.access_key}:{self._sign(encoded_policy)}:{encoded_policy}"

    def management_token(self, url: str) -> str:
        """``QBox`` authorization for a management request without a form body."""
        parts = urlsplit(url)
        data = parts.path
        if parts.query:
            data += f"?{parts.query}"
        signature = self._sign(data + "\n")
        return f"QBox {self.access_key}:{signature}"

    async def _manage(
        self,
        method: str,
        url: str,
        path: str | None = None,
    ) -> httpx.Response:
        response = await self._request(
            method,
            url,
            path=path,
            allow_status=(NO_SUCH_ENTRY, TARGET_EXISTS, NO_SUCH_BUCKET),
            headers={
                "Authorization": self.management_token(url),
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )

        if response.status_code == NO_SUCH_ENTRY:
            raise ObjectNotFoundException(path or url, details={"backend": self.display_name})
        if response.status_code == NO_SUCH_BUCKET:
            raise ConfigurationException(
                message=f"Bucket '{self.bucket}' does not exist",
                details={"backend": self.display_name},
            )
        if response.status_code == TARGET_EXISTS:
            raise StorageException(
                message=f"Target already exists: {path}",
                details={"backend": self.display_name, "path": path},
            )
        return response

    def _rs(self, *segments: str) -> str:
        return f"{settings.QINIU_RS_HOST}/" + "/".join(segments)

    # ===================
    # Lifecycle
    # ===================

    async def test_connection(self) -> bool:
        # A missing test key still proves the credentials and bucket are valid
        try:
            await self._stat(".connection-test")
            return True
        except ObjectNotFoundException:
            return True
        except StorageAPIException as e:
            logger.warning("Qiniu connection test failed for %s: %s", self.name, e.message)
            return False
        except Exception:
            logger.exception("Qiniu connection test raised for %s", self.name)
            return False

    # ===================
    # Object operations
    # ===================

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        key = to_key(path)
        response = await self._request(
            "POST",
            self.upload_host,
            path=path,
            data={"key": key, "token": self.upload_token(key)},
            files={"file": (key.rsplit("/", 1)[-1], data, content_type)},
        )
        body = self._json(response, path)

        return UploadResult.ok(
            path=path,
            size=len(data),
            url=self.get_url(path),
            hash=hashlib.md5(data).hexdigest(),
            metadata={"etag": body.get("hash"), "key": body.get("key", key)},
        )

    async def download(self, path: str) -> bytes:
        response = await self._request("GET", self.get_url(path), path=path)
        return response.content

    async def _stat(self, key: str, path: str | None = None) -> dict[str, Any]:
        response = await self._manage(
            "GET", self._rs("stat", encoded_entry(self.bucket, key)), path=path or key
        )
        return self._json(response, path or key)

    async def delete(self, path: str) -> bool:
        try:
            await self._manage(
                "POST", self._rs("delete", encoded_entry(self.bucket, to_key(path))), path=path
            )
        except ObjectNotFoundException:
            return False
        return True

    async def get_file_info(self, path: str) -> FileInfo:
        key = to_key(path)
        stat = await self._stat(key, path)
        return self._file_info(key, stat)

    def _file_info(self, key: str, item: dict[str, Any]) -> FileInfo:
        put_time = item.get("putTime")
        return FileInfo(
            name=key.rsplit("/", 1)[-1],
            path="/" + key,
            size=item.get("fsize", 0),
            # putTime is in units of 100ns
            last_modified=(
                datetime.fromtimestamp(put_time / 10_000_000, tz=timezone.utc)
                if put_time else None
            ),
            etag=item.get("hash"),
            content_type=item.get("mimeType"),
        )

    async def _transfer(self, op: str, source_key: str, target_key: str, path: str) -> None:
        await self._manage(
            "POST",
            self._rs(
                op,
                encoded_entry(self.bucket, source_key),
                encoded_entry(self.bucket, target_key),
            ),
            path=path,
        )

    async def move_file(self, source_path: str, target_path: str) -> None:
        await self._transfer("move", to_key(source_path), to_key(target_path), source_path)

    async def copy_file(self, source_path: str, target_path: str) -> None:
        await self._transfer("copy", to_key(source_path), to_key(target_path), source_path)

    def get_url(self, path: str) -> str:
        return f"{self.domain}/{to_key(path)}"

    # ===================
    # Listing
    # ===================

    async def _list(self, prefix: str, delimiter: str | None = None) -> tuple[list[dict], list[str]]:
        items: list[dict[str, Any]] = []
        prefixes: list[str] = []
        marker = ""

        while True:
            query = {"bucket": self.bucket, "prefix": prefix, "limit": 1000}
            if delimiter:
                query["delimiter"] = delimiter
            if marker:
                query["marker"] = marker
            url = f"{settings.QINIU_RSF_HOST}/list?{urlencode(query)}"

            body = self._json(await self._manage("POST", url, path=prefix), prefix)
            items.extend(body.get("items", []))
            prefixes.extend(body.get("commonPrefixes", []))

            marker = body.get("marker") or ""
            if not marker:
                return items, prefixes

    # ===================
    # Folder operations
    # ===================

    async def create_folder(self, path: str) -> None:
        key = to_folder_key(path)
        await self._request(
            "POST",
            self.upload_host,
            path=path,
            data={"key": key, "token": self.upload_token(key)},
            files={"file": ("", b"", "application/x-directory")},
        )

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        prefix = to_folder_key(path)
        items, _ = await self._list(prefix)
        keys = [item["key"] for item in items]

        if not recursive and any(k != prefix for k in keys):
            raise StorageException(
                message=f"Folder is not empty: {path}",
                details={"path": path, "objects": len(keys)},
            )
        for key in keys:
            try:
                await self._manage(
                    "POST", self._rs("delete", encoded_entry(self.bucket, key)), path=key
                )
            except ObjectNotFoundException:
                continue

    async def move_folder(self, source_path: str, target_path: str) -> None:
        old_prefix = to_folder_key(source_path)
        new_prefix = to_folder_key(target_path)
        items, _ = await self._list(old_prefix)

        if not items:
            raise ObjectNotFoundException(source_path)

        for item in items:
            key = item["key"]
            await self._transfer("move", key, new_prefix + key[len(old_prefix):], source_path)

    async def list_folder(self, path: str) -> FolderContents:
        prefix = to_folder_key(path)
        items, prefixes = await self._list(prefix, delimiter="/")

        files = [self._file_info(item["key"], item) for item in items if item["key"] != prefix]
        folders = [
            FolderInfo(name=p[len(prefix):].rstrip("/"), path="/" + p.rstrip("/"))
            for p in prefixes
        ]
        return FolderContents.build(files, folders)

    async def folder_exists(self, path: str) -> bool:
        prefix = to_folder_key(path)
        if not prefix:
            return True
        query = urlencode({"bucket": self.bucket, "prefix": prefix, "limit": 1})
        response = await self._manage("POST", f"{settings.QINIU_RSF_HOST}/list?{query}", path=path)
        body = self._json(response, path)
        return bool(body.get("items") or body.get("commonPrefixes"))
