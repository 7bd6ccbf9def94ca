"""
Templated HTTP sink adapter.
Posts objects to an arbitrary image-host style endpoint described entirely by
configuration. Such hosts are write-once: they accept uploads and serve
downloads but expose nothing else.
"""

import base64
import hashlib
import json
import logging
import time
from typing import Any

import httpx

from app.core.exceptions import ConfigurationException, StorageException
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, UploadResult
from app.storage.base import basename, normalize_path
from app.storage.http import HttpStorageAdapter

logger = logging.getLogger(__name__)


def extract_path(payload: Any, dotted: str) -> Any:
    """Walk ``a.b.0.c`` through nested dicts and lists."""
    result = payload
    for part in dotted.split("."):
        if isinstance(result, dict) and part in result:
            result = result[part]
        elif isinstance(result, list) and part.isdigit() and int(part) < len(result):
            result = result[int(part)]
        else:
            raise KeyError(part)
    return result


class CustomHttpAdapter(HttpStorageAdapter):
    """
    User-defined HTTP upload endpoint.

    Config:
        uploadUrl: Endpoint receiving uploads
        downloadUrl: Download URL template with {filename}, {id} and {path}
        method: Upload method (default POST)
        headers: Extra request headers, a mapping or a JSON object string
        body: Body template with {{file}} (base64 payload), {{filename}},
            {{path}} and {{timestamp}} placeholders
        responsePath: Dotted path to the file URL in the JSON response
    """

    kind = BackendKind.CUSTOM
    display_name = "Custom HTTP"

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, name, http_client)
        self._require("uploadUrl")

        self.upload_url = self.config["uploadUrl"]
        self.download_url = self.config.get("downloadUrl") or ""
        self.method = (self.config.get("method") or "POST").upper()
        self.body_template = self.config.get("body") or "{}"
        self.response_path = self.config.get("responsePath") or ""

        headers = self.config.get("headers") or {}
        if isinstance(headers, str):
            try:
                headers = json.loads(headers)
            except ValueError as e:
                raise ConfigurationException(
                    message="Custom HTTP headers must be a JSON object",
                    details={"kind": self.kind.value, "field": "headers"},
                ) from e
        self.headers = {str(k): str(v) for k, v in headers.items()}
        self.headers.setdefault("Content-Type", "application/json")

        if not self.response_path and not self.download_url:
            raise ConfigurationException(
                message="Custom HTTP configuration requires responsePath or downloadUrl",
                details={"kind": self.kind.value, "missing": ["responsePath"]},
            )

    # ===================
    # Templates
    # ===================

    def render_body(self, data: bytes, path: str) -> str:
        values = {
            "file": base64.b64encode(data).decode(),
            "filename": basename(path),
            "path": path,
            "timestamp": str(int(time.time() * 1000)),
        }
        json_body = "json" in self.headers["Content-Type"].lower()

        body = self.body_template
        for name, value in values.items():
            if json_body:
                value = json.dumps(value)[1:-1]
            body = body.replace("{{" + name + "}}", value)
        return body

    def render_download_url(self, path: str) -> str:
        filename = basename(path)
        file_id = filename.split(".", 1)[0]
        return (
            self.download_url
            .replace("{filename}", filename)
            .replace("{id}", file_id)
            .replace("{path}", path)
        )

    # ===================
    # Lifecycle
    # ===================

    async def test_connection(self) -> bool:
        # Any answer below 500 (405 included) means the endpoint is reachable
        try:
            response = await self.client.head(self.upload_url, headers=self.headers)
        except httpx.HTTPError as e:
            logger.warning("Custom HTTP endpoint %s unreachable: %s", self.upload_url, e)
            return False
        except Exception:
            logger.exception("Custom HTTP connection test raised for %s", self.name)
            return False
        return response.status_code < 500

    # ===================
    # Object operations
    # ===================

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        kwargs: dict[str, Any] = {"headers": self.headers}
        if self.method != "GET":
            kwargs["content"] = self.render_body(data, path)

        response = await self._request(self.method, self.upload_url, path=path, **kwargs)

        if self.response_path:
            try:
                url = extract_path(response.json(), self.response_path)
            except (ValueError, KeyError) as e:
                raise StorageException(
                    message=f"Response does not contain {self.response_path}",
                    details={"backend": self.name, "path": path},
                ) from e
            if not isinstance(url, str):
                raise StorageException(
                    message=f"Invalid URL at {self.response_path} in response",
                    details={"backend": self.name, "path": path},
                )
        else:
            url = self.render_download_url(path)

        return UploadResult.ok(
            path=path,
            size=len(data),
            url=url,
            hash=hashlib.md5(data).hexdigest(),
        )

    async def download(self, path: str) -> bytes:
        if not self.download_url:
            raise self._unsupported("download")
        response = await self._request("GET", self.render_download_url(path), path=path)
        return response.content

    async def get_file_info(self, path: str) -> FileInfo:
        if not self.download_url:
            raise self._unsupported("stat")
        response = await self._request("HEAD", self.render_download_url(path), path=path)
        return FileInfo(
            name=basename(path),
            path=normalize_path(path),
            size=int(response.headers.get("content-length", 0)),
            etag=response.headers.get("etag"),
            content_type=response.headers.get("content-type"),
        )

    async def delete(self, path: str) -> bool:
        raise self._unsupported("delete")

    async def move_file(self, source_path: str, target_path: str) -> None:
        raise self._unsupported("move")

    async def copy_file(self, source_path: str, target_path: str) -> None:
        raise self._unsupported("copy")

    def get_url(self, path: str) -> str:
        return self.render_download_url(path)

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
