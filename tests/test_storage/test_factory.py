"""
Tests for the adapter factory.
"""

import pytest

from app.core.exceptions import ConfigurationException
from app.models.storage_source import BackendKind
from app.schemas.storage import StorageSourceDescriptor
from app.storage import factory
from app.storage.cloudinary import CloudinaryAdapter
from app.storage.custom import CustomHttpAdapter
from app.storage.github import GitHubAdapter
from app.storage.local import LocalStorageAdapter
from app.storage.qiniu import QiniuAdapter
from app.storage.s3 import MinIOAdapter, S3CompatibleAdapter
from app.storage.telegram import TelegramAdapter
from app.storage.upyun import UpyunAdapter

from conftest import InMemoryAdapter

VALID_CONFIGS = {
    BackendKind.R2: (S3CompatibleAdapter, {
        "accountId": "acc", "accessKeyId": "k", "secretAccessKey": "s", "bucketName": "b",
    }),
    BackendKind.MINIO: (MinIOAdapter, {
        "endpoint": "minio:9000", "accessKey": "k", "secretKey": "s", "bucket": "b",
    }),
    BackendKind.QINIU: (QiniuAdapter, {
        "accessKey": "k", "secretKey": "s", "bucket": "b", "domain": "cdn.example.com",
    }),
    BackendKind.UPYUN: (UpyunAdapter, {
        "bucket": "b", "operator": "op", "password": "pw", "domain": "b.test.upcdn.net",
    }),
    BackendKind.CLOUDINARY: (CloudinaryAdapter, {"cloudName": "demo", "apiKey": "k", "apiSecret": "s"}),
    BackendKind.TELEGRAM: (TelegramAdapter, {"botToken": "123:abc", "chatId": "-100"}),
    BackendKind.GITHUB: (GitHubAdapter, {"token": "ghp_x", "repo": "owner/repo"}),
    BackendKind.CUSTOM: (CustomHttpAdapter, {
        "uploadUrl": "https://img.example.com/upload", "responsePath": "data.url",
    }),
    BackendKind.LOCAL: (LocalStorageAdapter, {"basePath": "/tmp/storage-test"}),
}


def descriptor(kind: BackendKind, config: dict, source_id: int = 1) -> StorageSourceDescriptor:
    return StorageSourceDescriptor(id=source_id, name=f"{kind.value} source", kind=kind, config=config)


@pytest.mark.parametrize("kind", list(VALID_CONFIGS))
def test_create_adapter_per_kind(kind: BackendKind):
    expected_class, config = VALID_CONFIGS[kind]

    adapter = factory.create_adapter(descriptor(kind, config))

    assert type(adapter) is expected_class
    assert adapter.kind == kind
    assert adapter.name == f"{kind.value} source"


@pytest.mark.parametrize("kind", list(VALID_CONFIGS))
def test_missing_config_fails_at_construction(kind: BackendKind):
    with pytest.raises(ConfigurationException):
        factory.create_adapter(descriptor(kind, {}))


def test_every_kind_is_supported():
    assert set(factory.supported_kinds()) == set(BackendKind)


def test_unregistered_kind(monkeypatch):
    monkeypatch.delitem(factory.ADAPTER_REGISTRY, BackendKind.TELEGRAM)

    with pytest.raises(ConfigurationException) as exc:
        factory.create_adapter(descriptor(BackendKind.TELEGRAM, {"botToken": "t", "chatId": "c"}))

    assert "Unsupported storage kind" in exc.value.message


def test_unknown_kind_tag():
    legacy = StorageSourceDescriptor(id=7, name="legacy", kind="dropbox", config={"token": "x"})

    with pytest.raises(ConfigurationException) as exc:
        factory.create_adapter(legacy)

    assert exc.value.message == "Unsupported storage kind: dropbox"
    assert exc.value.details == {"sourceId": 7, "kind": "dropbox"}


def test_kind_tag_is_case_insensitive():
    _, config = VALID_CONFIGS[BackendKind.LOCAL]
    d = StorageSourceDescriptor(id=1, name="disk", kind="LOCAL", config=config)

    assert isinstance(factory.create_adapter(d), LocalStorageAdapter)


def test_register_adapter(monkeypatch):
    monkeypatch.setitem(factory.ADAPTER_REGISTRY, BackendKind.LOCAL, LocalStorageAdapter)

    factory.register_adapter(BackendKind.LOCAL, InMemoryAdapter)

    adapter = factory.create_adapter(descriptor(BackendKind.LOCAL, {}))
    assert isinstance(adapter, InMemoryAdapter)


def test_factory_does_not_cache():
    _, config = VALID_CONFIGS[BackendKind.LOCAL]
    d = descriptor(BackendKind.LOCAL, config)

    assert factory.create_adapter(d) is not factory.create_adapter(d)


def test_qiniu_unknown_region():
    _, config = VALID_CONFIGS[BackendKind.QINIU]

    with pytest.raises(ConfigurationException):
        factory.create_adapter(descriptor(BackendKind.QINIU, {**config, "region": "mars-1"}))
