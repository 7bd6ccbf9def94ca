"""
GitHub repository storage adapter.
Objects are committed through the contents API under a storage sub-path of
one branch. Git has no empty directories, so folders are kept alive with a
``.gitkeep`` placeholder.
"""

import base64
import hashlib
import logging
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
from app.storage.base import guess_content_type, normalize_path, to_key
from app.storage.http import HttpStorageAdapter

logger = logging.getLogger(__name__)
settings = get_settings()

PLACEHOLDER = ".gitkeep"


class GitHubAdapter(HttpStorageAdapter):
    """
    Git repository storage via the GitHub contents API.

    Config:
        token: Personal access token with contents write access
        repo: Repository as ``owner/repo``
        branch: Target branch (default "main")
        path: Storage sub-path inside the repository (default "uploads/")
    """

    kind = BackendKind.GITHUB
    display_name = "GitHub"

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, name, http_client)
        self._require("token", "repo")

        self.token = self.config["token"]
        self.repo = self.config["repo"].strip("/")
        self.branch = self.config.get("branch") or "main"
        root = to_key(self.config.get("path") or "uploads/")
        self.root = f"{root}/" if root else ""
        self.max_file_size = settings.GITHUB_MAX_FILE_SIZE

    def _client_options(self) -> dict[str, Any]:
        return {
            "base_url": settings.GITHUB_API_URL,
            "headers": {
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        }

    # ===================
    # Path mapping
    # ===================

    def _repo_path(self, path: str) -> str:
        """Repository path for a logical path."""
        return (self.root + to_key(path)).rstrip("/")

    def _logical_path(self, repo_path: str) -> str:
        return normalize_path(repo_path[len(self.root):])

    def _contents_url(self, repo_path: str) -> str:
        return f"/repos/{self.repo}/contents/{quote(repo_path)}"

    async def _get_contents(self, repo_path: str, path: str) -> Any | None:
        """Contents API payload, a dict for files or a list for directories. None when absent."""
        response = await self._request(
            "GET",
            self._contents_url(repo_path),
            path=path,
            allow_status=(404,),
            params={"ref": self.branch},
        )
        if response.status_code == 404:
            return None
        return self._json(response, path, expected=(dict, list))

    async def _file_sha(self, repo_path: str, path: str) -> str | None:
        contents = await self._get_contents(repo_path, path)
        if isinstance(contents, dict) and contents.get("type") == "file":
            return contents["sha"]
        return None

    async def _put(self, repo_path: str, data: bytes, message: str, path: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(data).decode(),
            "branch": self.branch,
        }
        sha = await self._file_sha(repo_path, path)
        if sha:
            payload["sha"] = sha

        response = await self._request("PUT", self._contents_url(repo_path), path=path, json=payload)
        return self._json(response, path)

    async def _remove(self, repo_path: str, sha: str, path: str) -> None:
        await self._request(
            "DELETE",
            self._contents_url(repo_path),
            path=path,
            json={"message": f"Delete {repo_path}", "sha": sha, "branch": self.branch},
        )

    async def _walk(self, repo_path: str, path: str) -> list[dict[str, Any]] | None:
        """Every file entry below a directory, None when it does not exist."""
        contents = await self._get_contents(repo_path, path)
        if contents is None:
            return None
        if not isinstance(contents, list):
            raise StorageException(
                message=f"Not a folder: {path}",
                details={"backend": self.display_name, "path": path},
            )

        files: list[dict[str, Any]] = []
        for entry in contents:
            if entry["type"] == "dir":
                files.extend(await self._walk(entry["path"], path) or [])
            else:
                files.append(entry)
        return files

    # ===================
    # Lifecycle
    # ===================

    async def test_connection(self) -> bool:
        try:
            response = await self._request("GET", f"/repos/{self.repo}")
            permissions = self._json(response).get("permissions") or {}
            if permissions and not permissions.get("push", False):
                logger.warning("GitHub token for %s cannot push to %s", self.name, self.repo)
            return True
        except StorageAPIException as e:
            logger.warning("GitHub connection test failed for %s: %s", self.name, e.message)
            return False
        except Exception:
            logger.exception("GitHub connection test raised for %s", self.name)
            return False

    # ===================
    # Object operations
    # ===================

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        repo_path = self._repo_path(path)
        body = await self._put(repo_path, data, f"Upload {repo_path}", path)
        content = body.get("content") or {}

        return UploadResult.ok(
            path=path,
            size=len(data),
            url=self.get_url(path),
            hash=hashlib.md5(data).hexdigest(),
            metadata={
                "sha": content.get("sha"),
                "commit": (body.get("commit") or {}).get("sha"),
            },
        )

    async def download(self, path: str) -> bytes:
        response = await self._request(
            "GET",
            self._contents_url(self._repo_path(path)),
            path=path,
            params={"ref": self.branch},
            headers={"Accept": "application/vnd.github.raw"},
        )
        return response.content

    async def delete(self, path: str) -> bool:
        repo_path = self._repo_path(path)
        sha = await self._file_sha(repo_path, path)
        if sha is None:
            return False

        await self._remove(repo_path, sha, path)
        return True

    async def get_file_info(self, path: str) -> FileInfo:
        contents = await self._get_contents(self._repo_path(path), path)
        if not isinstance(contents, dict) or contents.get("type") != "file":
            raise ObjectNotFoundException(path)

        return FileInfo(
            name=contents["name"],
            path=normalize_path(path),
            size=contents.get("size", 0),
            etag=contents.get("sha"),
            content_type=guess_content_type(contents["name"]),
        )

    async def copy_file(self, source_path: str, target_path: str) -> None:
        data = await self.download(source_path)
        target = self._repo_path(target_path)
        await self._put(target, data, f"Copy {self._repo_path(source_path)} to {target}", target_path)

    async def move_file(self, source_path: str, target_path: str) -> None:
        await self.copy_file(source_path, target_path)
        await self.delete(source_path)

    def get_url(self, path: str) -> str:
        return f"https://raw.githubusercontent.com/{self.repo}/{self.branch}/{self._repo_path(path)}"

    # ===================
    # Folder operations
    # ===================

    async def create_folder(self, path: str) -> None:
        if not to_key(path):
            return
        placeholder = f"{self._repo_path(path)}/{PLACEHOLDER}"
        if await self._file_sha(placeholder, path) is None:
            await self._put(placeholder, b"", f"Create folder {self._repo_path(path)}", path)

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        folder = self._repo_path(path)
        files = await self._walk(folder, path)
        if files is None:
            return

        placeholder = f"{folder}/{PLACEHOLDER}"
        if not recursive and any(f["path"] != placeholder for f in files):
            raise StorageException(
                message=f"Folder is not empty: {path}",
                details={"path": path, "objects": len(files)},
            )
        for entry in files:
            await self._remove(entry["path"], entry["sha"], path)

    async def move_folder(self, source_path: str, target_path: str) -> None:
        old_root = self._repo_path(source_path)
        new_root = self._repo_path(target_path)
        files = await self._walk(old_root, source_path)
        if not files:
            raise ObjectNotFoundException(source_path)

        for entry in files:
            target = new_root + entry["path"][len(old_root):]
            data = await self.download(self._logical_path(entry["path"]))
            await self._put(target, data, f"Move {entry['path']} to {target}", target_path)
            await self._remove(entry["path"], entry["sha"], source_path)

    async def list_folder(self, path: str) -> FolderContents:
        contents = await self._get_contents(self._repo_path(path), path)
        if not isinstance(contents, list):
            return FolderContents.build([], [])

        files = [
            FileInfo(
                name=entry["name"],
                path=self._logical_path(entry["path"]),
                size=entry.get("size", 0),
                etag=entry.get("sha"),
                content_type=guess_content_type(entry["name"]),
            )
            for entry in contents
            if entry["type"] == "file" and entry["name"] != PLACEHOLDER
        ]
        folders = [
            FolderInfo(name=entry["name"], path=self._logical_path(entry["path"]))
            for entry in contents
            if entry["type"] == "dir"
        ]
        return FolderContents.build(files, folders)

    async def folder_exists(self, path: str) -> bool:
        if not to_key(path):
            return True
        return isinstance(await self._get_contents(self._repo_path(path), path), list)
