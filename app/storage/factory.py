"""
Storage adapter factory.
Maps a descriptor's backend kind to its adapter class.
"""

from app.core.exceptions import ConfigurationException
from app.models.storage_source import BackendKind
from app.schemas.storage import StorageSourceDescriptor
from app.storage.base import StorageAdapter
from app.storage.cloudinary import CloudinaryAdapter
from app.storage.custom import CustomHttpAdapter
from app.storage.github import GitHubAdapter
from app.storage.local import LocalStorageAdapter
from app.storage.qiniu import QiniuAdapter
from app.storage.s3 import MinIOAdapter, S3CompatibleAdapter
from app.storage.telegram import TelegramAdapter
from app.storage.upyun import UpyunAdapter

# Keyed by the stored kind tag; BackendKind members compare equal to their values
ADAPTER_REGISTRY: dict[str, type[StorageAdapter]] = {
    BackendKind.R2: S3CompatibleAdapter,
    BackendKind.MINIO: MinIOAdapter,
    BackendKind.QINIU: QiniuAdapter,
    BackendKind.UPYUN: UpyunAdapter,
    BackendKind.CLOUDINARY: CloudinaryAdapter,
    BackendKind.TELEGRAM: TelegramAdapter,
    BackendKind.GITHUB: GitHubAdapter,
    BackendKind.CUSTOM: CustomHttpAdapter,
    BackendKind.LOCAL: LocalStorageAdapter,
}


def register_adapter(kind: str, adapter_class: type[StorageAdapter]) -> None:
    """Register (or replace) the adapter class for a backend kind tag."""
    ADAPTER_REGISTRY[str(getattr(kind, "value", kind)).lower()] = adapter_class


def supported_kinds() -> list[str]:
    return [str(getattr(k, "value", k)) for k in ADAPTER_REGISTRY]


def create_adapter(descriptor: StorageSourceDescriptor) -> StorageAdapter:
    """
    Build an unconnected adapter for a descriptor.

    No caching happens here; the storage manager owns adapter lifetimes.

    Raises:
        ConfigurationException: Unknown kind or invalid per-kind configuration
    """
    adapter_class = ADAPTER_REGISTRY.get(descriptor.kind.lower())
    if adapter_class is None:
        raise ConfigurationException(
            message=f"Unsupported storage kind: {descriptor.kind}",
            details={"sourceId": descriptor.id, "kind": descriptor.kind},
        )

    return adapter_class(descriptor.config, name=descriptor.name)
