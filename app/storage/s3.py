"""
S3-compatible storage adapters.
Covers Cloudflare R2 and self-hosted MinIO. Folders are simulated with
zero-byte ``prefix/`` marker objects.
"""

import asyncio
import base64
import hashlib
import io
import logging
from datetime import datetime, timezone
from typing import Any, Callable

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from app.config import get_settings
from app.core.exceptions import (
    AuthenticationException,
    ConfigurationException,
    ObjectNotFoundException,
    PermissionDeniedException,
    StorageAPIException,
    StorageException,
    TransientNetworkException,
)
from app.models.storage_source import BackendKind
from app.schemas.storage import FileInfo, FolderContents, FolderInfo, UploadResult
from app.storage.base import StorageAdapter, to_folder_key, to_key

logger = logging.getLogger(__name__)
settings = get_settings()

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
AUTH_CODES = {"InvalidAccessKeyId", "SignatureDoesNotMatch", "401"}
DENIED_CODES = {"AccessDenied", "403"}
TRANSIENT_CODES = {"SlowDown", "ServiceUnavailable", "InternalError", "RequestTimeout", "500", "503"}


class S3CompatibleAdapter(StorageAdapter):
    """
    S3-compatible object storage implementation (Cloudflare R2).

    Config:
        accountId: R2 account, used to derive the endpoint
        endpoint: Explicit endpoint URL (overrides accountId)
        accessKeyId / secretAccessKey: API credentials
        bucketName: Target bucket
        domain: Optional custom public domain
        region: Optional region (default "auto")
    """

    kind = BackendKind.R2
    display_name = "Cloudflare R2"

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        client: Any = None,
    ):
        super().__init__(config, name)
        self._configure()
        self.client = client
        self._owns_client = client is None
        self.transfer_config = TransferConfig(
            multipart_threshold=settings.MULTIPART_THRESHOLD_BYTES,
            multipart_chunksize=settings.MULTIPART_CHUNK_BYTES,
        )

    def _configure(self) -> None:
        self._require("accessKeyId", "secretAccessKey", "bucketName")
        if not self.config.get("accountId") and not self.config.get("endpoint"):
            raise ConfigurationException(
                message=f"{self.display_name} configuration requires accountId or endpoint",
                details={"kind": self.kind.value, "missing": ["accountId"]},
            )

        self.bucket_name = self.config["bucketName"]
        self.access_key = self.config["accessKeyId"]
        self.secret_key = self.config["secretAccessKey"]
        self.region = self.config.get("region") or "auto"
        self.domain = self.config.get("domain")
        self.endpoint_url = (
            self.config.get("endpoint")
            or f"https://{self.config['accountId']}.r2.cloudflarestorage.com"
        )

    # ===================
    # Client plumbing
    # ===================

    async def connect(self) -> None:
        if self.client is not None:
            return

        config = Config(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "standard"},
            s3={"addressing_style": "path"},
        )
        self.client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            region_name=self.region,
            config=config,
        )
        self._owns_client = True

    async def disconnect(self) -> None:
        if self.client is not None and self._owns_client:
            self.client.close()
            self.client = None

    def _map_error(self, error: Exception, path: str | None = None) -> StorageAPIException:
        """Translate a botocore failure into the storage taxonomy."""
        details = {"bucket": self.bucket_name, "backend": self.name}
        if path is not None:
            details["path"] = path

        if isinstance(error, EndpointConnectionError):
            return TransientNetworkException(
                f"Cannot reach {self.display_name} endpoint {self.endpoint_url}",
                details=details,
            )
        if isinstance(error, ClientError):
            code = str(error.response.get("Error", {}).get("Code", ""))
            if code in NOT_FOUND_CODES:
                return ObjectNotFoundException(path or "", details=details)
            if code == "NoSuchBucket":
                return ConfigurationException(
                    message=f"Bucket '{self.bucket_name}' does not exist",
                    details=details,
                )
            if code in AUTH_CODES:
                return AuthenticationException(
                    f"{self.display_name} rejected the access key", details=details
                )
            if code in DENIED_CODES:
                return PermissionDeniedException(
                    f"{self.display_name} denied the operation", details=details
                )
            if code in TRANSIENT_CODES:
                return TransientNetworkException(
                    f"{self.display_name} unavailable: {code}", details=details
                )
        if isinstance(error, BotoCoreError):
            return TransientNetworkException(
                f"{self.display_name} request failed: {error}", details=details
            )
        return StorageException(
            message=f"{self.display_name} request failed: {error}",
            details=details,
        )

    async def _run(self, fn: Callable[..., Any], *args: Any, path: str | None = None, **kwargs: Any) -> Any:
        """Run blocking boto3 work in a worker thread with error mapping."""
        if self.client is None:
            await self.connect()
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._map_error(e, path) from e

    async def _client_call(self, method: str, path: str | None = None, **kwargs: Any) -> Any:
        if self.client is None:
            await self.connect()
        return await self._run(getattr(self.client, method), path=path, **kwargs)

    def _list_keys(self, prefix: str) -> list[dict[str, Any]]:
        paginator = self.client.get_paginator("list_objects_v2")
        objects: list[dict[str, Any]] = []
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            objects.extend(page.get("Contents", []))
        return objects

    def _list_children(self, prefix: str) -> tuple[list[dict[str, Any]], list[str]]:
        paginator = self.client.get_paginator("list_objects_v2")
        contents: list[dict[str, Any]] = []
        prefixes: list[str] = []
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter="/"):
            contents.extend(page.get("Contents", []))
            prefixes.extend(p["Prefix"] for p in page.get("CommonPrefixes", []))
        return contents, prefixes

    def _read_object(self, key: str) -> bytes:
        response = self.client.get_object(Bucket=self.bucket_name, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def _delete_keys(self, keys: list[str]) -> None:
        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            self.client.delete_objects(
                Bucket=self.bucket_name,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )

    # ===================
    # Lifecycle
    # ===================

    async def test_connection(self) -> bool:
        try:
            await self._client_call("list_objects_v2", Bucket=self.bucket_name, MaxKeys=1)
            return True
        except StorageAPIException as e:
            logger.warning("%s connection test failed for %s: %s", self.display_name, self.name, e.message)
            return False
        except Exception:
            logger.exception("%s connection test raised for %s", self.display_name, self.name)
            return False

    # ===================
    # Object operations
    # ===================

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        key = to_key(path)
        digest = hashlib.md5(data)
        metadata = {
            "uploaded-at": datetime.now(timezone.utc).isoformat(),
            "hash": digest.hexdigest(),
        }
        multipart = len(data) > settings.MULTIPART_THRESHOLD_BYTES

        if multipart:
            await self._run(
                self._upload_multipart, data, key, content_type, metadata, path=path
            )
            head = await self._client_call(
                "head_object", Bucket=self.bucket_name, Key=key, path=path
            )
        else:
            head = await self._client_call(
                "put_object",
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata,
                ContentMD5=base64.b64encode(digest.digest()).decode(),
                path=path,
            )

        return UploadResult.ok(
            path=path,
            size=len(data),
            url=self.get_url(path),
            hash=metadata["hash"],
            metadata={
                "etag": head.get("ETag"),
                "versionId": head.get("VersionId"),
                "multipart": multipart,
            },
        )

    def _upload_multipart(self, data: bytes, key: str, content_type: str, metadata: dict[str, str]) -> None:
        # upload_fileobj splits into parts and aborts the upload on failure
        self.client.upload_fileobj(
            io.BytesIO(data),
            self.bucket_name,
            key,
            ExtraArgs={"ContentType": content_type, "Metadata": metadata},
            Config=self.transfer_config,
        )

    async def download(self, path: str) -> bytes:
        return await self._run(self._read_object, to_key(path), path=path)

    async def delete(self, path: str) -> bool:
        if not await self._object_exists(path):
            return False

        await self._client_call(
            "delete_object", Bucket=self.bucket_name, Key=to_key(path), path=path
        )
        return True

    async def _object_exists(self, path: str) -> bool:
        try:
            await self._client_call(
                "head_object", Bucket=self.bucket_name, Key=to_key(path), path=path
            )
            return True
        except ObjectNotFoundException:
            return False

    async def get_file_info(self, path: str) -> FileInfo:
        key = to_key(path)
        response = await self._client_call(
            "head_object", Bucket=self.bucket_name, Key=key, path=path
        )
        return FileInfo(
            name=key.rsplit("/", 1)[-1],
            path="/" + key,
            size=response.get("ContentLength", 0),
            last_modified=response.get("LastModified"),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
        )

    async def copy_file(self, source_path: str, target_path: str) -> None:
        await self._client_call(
            "copy_object",
            Bucket=self.bucket_name,
            CopySource={"Bucket": self.bucket_name, "Key": to_key(source_path)},
            Key=to_key(target_path),
            path=source_path,
        )

    async def move_file(self, source_path: str, target_path: str) -> None:
        await self.copy_file(source_path, target_path)
        await self._client_call(
            "delete_object",
            Bucket=self.bucket_name,
            Key=to_key(source_path),
            path=source_path,
        )

    def get_url(self, path: str) -> str:
        key = to_key(path)
        if self.domain:
            domain = self.domain if self.domain.startswith("http") else f"https://{self.domain}"
            return f"{domain.rstrip('/')}/{key}"
        return f"https://pub-{self.config.get('accountId')}.r2.dev/{key}"

    # ===================
    # Folder operations
    # ===================

    async def create_folder(self, path: str) -> None:
        await self._client_call(
            "put_object",
            Bucket=self.bucket_name,
            Key=to_folder_key(path),
            Body=b"",
            path=path,
        )

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        prefix = to_folder_key(path)
        objects = await self._run(self._list_keys, prefix, path=path)
        keys = [obj["Key"] for obj in objects]

        if not recursive and any(k != prefix for k in keys):
            raise StorageException(
                message=f"Folder is not empty: {path}",
                details={"path": path, "objects": len(keys)},
            )
        if keys:
            await self._run(self._delete_keys, keys, path=path)

    async def move_folder(self, source_path: str, target_path: str) -> None:
        old_prefix = to_folder_key(source_path)
        new_prefix = to_folder_key(target_path)
        objects = await self._run(self._list_keys, old_prefix, path=source_path)

        if not objects:
            raise ObjectNotFoundException(source_path)

        for obj in objects:
            new_key = new_prefix + obj["Key"][len(old_prefix):]
            await self._client_call(
                "copy_object",
                Bucket=self.bucket_name,
                CopySource={"Bucket": self.bucket_name, "Key": obj["Key"]},
                Key=new_key,
                path=source_path,
            )
        await self._run(self._delete_keys, [obj["Key"] for obj in objects], path=source_path)

    async def list_folder(self, path: str) -> FolderContents:
        prefix = to_folder_key(path)
        contents, prefixes = await self._run(self._list_children, prefix, path=path)

        files = [
            FileInfo(
                name=obj["Key"][len(prefix):],
                path="/" + obj["Key"],
                size=obj.get("Size", 0),
                last_modified=obj.get("LastModified"),
                etag=obj.get("ETag"),
            )
            for obj in contents
            if obj["Key"] != prefix
        ]
        folders = [
            FolderInfo(
                name=p[len(prefix):].rstrip("/"),
                path="/" + p.rstrip("/"),
            )
            for p in prefixes
        ]
        return FolderContents.build(files, folders)

    async def folder_exists(self, path: str) -> bool:
        prefix = to_folder_key(path)
        if not prefix:
            return True
        response = await self._client_call(
            "list_objects_v2",
            Bucket=self.bucket_name,
            Prefix=prefix,
            MaxKeys=1,
            path=path,
        )
        return response.get("KeyCount", 0) > 0


class MinIOAdapter(S3CompatibleAdapter):
    """
    Self-hosted MinIO object storage.

    Config:
        endpoint: host[:port] (a scheme prefix is accepted)
        accessKey / secretKey: API credentials
        bucket: Target bucket
        useSSL: Use https (default False)
    """

    kind = BackendKind.MINIO
    display_name = "MinIO"

    def _configure(self) -> None:
        self._require("endpoint", "accessKey", "secretKey", "bucket")

        self.bucket_name = self.config["bucket"]
        self.access_key = self.config["accessKey"]
        self.secret_key = self.config["secretKey"]
        self.region = self.config.get("region") or "us-east-1"
        self.domain = None

        endpoint = self.config["endpoint"].rstrip("/")
        if endpoint.startswith(("http://", "https://")):
            self.endpoint_url = endpoint
        else:
            scheme = "https" if self.config.get("useSSL") else "http"
            self.endpoint_url = f"{scheme}://{endpoint}"

    def get_url(self, path: str) -> str:
        return f"{self.endpoint_url}/{self.bucket_name}/{to_key(path)}"
