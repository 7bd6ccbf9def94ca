"""
Pytest configuration and fixtures for Storage Federation API tests.
"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.exceptions import (
    AuthenticationException,
    ConfigurationException,
    ObjectNotFoundException,
    StorageException,
    TransientNetworkException,
)
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.storage_source import BackendKind, StorageSource
from app.schemas.storage import (
    FileInfo,
    FolderContents,
    FolderInfo,
    StorageSourceDescriptor,
    UploadResult,
)
from app.services.metrics import MetricsCollector
from app.storage.base import StorageAdapter, normalize_path
from app.storage.manager import StorageManager, get_storage_manager


def _parent(path: str) -> str:
    return normalize_path(path).rsplit("/", 1)[0] or "/"


class InMemoryAdapter(StorageAdapter):
    """
    Storage adapter keeping objects and folders in dictionaries.

    Behaviour is steered through its config:
        failConnect: raise on connect
        connectDelay: seconds connect waits before succeeding
        healthy: test_connection result (default True)
        testRaises: raise from test_connection
        failOps: operation names that raise TransientNetworkException
        maxFileSize: per-object limit
    """

    kind = BackendKind.LOCAL
    display_name = "Memory"

    def __init__(self, config: dict[str, Any], name: str | None = None):
        super().__init__(config, name)
        self.files: dict[str, bytes] = {}
        self.folders: set[str] = set()
        self.calls: list[tuple[str, ...]] = []
        self.connected = False
        self.fail_ops = set(self.config.get("failOps", []))
        if "maxFileSize" in self.config:
            self.max_file_size = self.config["maxFileSize"]

    def _record(self, op: str, *args: str) -> None:
        self.calls.append((op, *args))
        if op in self.fail_ops:
            raise TransientNetworkException(f"{op} failed on {self.name}")

    def calls_to(self, op: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] == op]

    async def connect(self) -> None:
        if self.config.get("failConnect"):
            raise AuthenticationException(f"{self.name} rejected the credentials")
        await asyncio.sleep(self.config.get("connectDelay", 0))
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def test_connection(self) -> bool:
        if self.config.get("testRaises"):
            raise RuntimeError("connection check exploded")
        return self.config.get("healthy", True)

    async def _upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        self._record("upload", path)
        self.files[path] = data
        return UploadResult.ok(path=path, size=len(data), url=self.get_url(path))

    async def download(self, path: str) -> bytes:
        self._record("download", normalize_path(path))
        try:
            return self.files[normalize_path(path)]
        except KeyError:
            raise ObjectNotFoundException(path)

    async def delete(self, path: str) -> bool:
        self._record("delete", normalize_path(path))
        return self.files.pop(normalize_path(path), None) is not None

    async def get_file_info(self, path: str) -> FileInfo:
        self._record("get_file_info", normalize_path(path))
        path = normalize_path(path)
        if path not in self.files:
            raise ObjectNotFoundException(path)
        return FileInfo(name=path.rsplit("/", 1)[-1], path=path, size=len(self.files[path]))

    async def move_file(self, source_path: str, target_path: str) -> None:
        await self.copy_file(source_path, target_path)
        del self.files[normalize_path(source_path)]

    async def copy_file(self, source_path: str, target_path: str) -> None:
        data = await self.download(source_path)
        self.files[normalize_path(target_path)] = data

    def get_url(self, path: str) -> str:
        return f"memory://{self.name}{normalize_path(path)}"

    async def create_folder(self, path: str) -> None:
        self._record("create_folder", normalize_path(path))
        self.folders.add(normalize_path(path))

    async def delete_folder(self, path: str, recursive: bool = False) -> None:
        path = normalize_path(path)
        self._record("delete_folder", path)
        nested = [p for p in [*self.files, *self.folders] if p.startswith(path + "/")]
        if nested and not recursive:
            raise StorageException(f"Folder is not empty: {path}")
        for p in nested:
            self.files.pop(p, None)
            self.folders.discard(p)
        self.folders.discard(path)

    async def move_folder(self, source_path: str, target_path: str) -> None:
        source, target = normalize_path(source_path), normalize_path(target_path)
        self._record("move_folder", source, target)
        if source not in self.folders:
            raise ObjectNotFoundException(source)

        def moved(p: str) -> str:
            return target + p[len(source):]

        self.folders = {moved(p) if p == source or p.startswith(source + "/") else p for p in self.folders}
        self.files = {
            (moved(p) if p.startswith(source + "/") else p): data
            for p, data in self.files.items()
        }

    async def list_folder(self, path: str) -> FolderContents:
        path = normalize_path(path)
        self._record("list_folder", path)
        files = [
            FileInfo(name=p.rsplit("/", 1)[-1], path=p, size=len(data))
            for p, data in sorted(self.files.items())
            if _parent(p) == path
        ]
        folders = [
            FolderInfo(name=p.rsplit("/", 1)[-1], path=p)
            for p in sorted(self.folders)
            if _parent(p) == path
        ]
        return FolderContents.build(files, folders)

    async def folder_exists(self, path: str) -> bool:
        path = normalize_path(path)
        self._record("folder_exists", path)
        return path == "/" or path in self.folders


class FakeAdapterFactory:
    """Adapter factory building InMemoryAdapters and remembering them by source id."""

    def __init__(self) -> None:
        self.adapters: dict[int, InMemoryAdapter] = {}
        self.builds: list[int] = []

    def __call__(self, descriptor: StorageSourceDescriptor) -> InMemoryAdapter:
        self.builds.append(descriptor.id)
        if descriptor.config.get("failBuild"):
            raise ConfigurationException(f"{descriptor.name} configuration missing: token")
        adapter = InMemoryAdapter(descriptor.config, name=descriptor.name)
        self.adapters[descriptor.id] = adapter
        return adapter


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a test database engine backed by a per-test SQLite file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def add_source(session_factory) -> Callable[..., Awaitable[int]]:
    """Insert a storage source row and return its id."""

    async def _add(
        name: str,
        priority: int = 50,
        kind: str = BackendKind.LOCAL,
        config: dict[str, Any] | None = None,
        quota_limit: int = 10 * 1024 * 1024 * 1024,
        quota_used: int = 0,
        is_active: bool = True,
        bulk_capable: bool | None = None,
        cdn_capable: bool | None = None,
    ) -> int:
        async with session_factory() as session:
            source = StorageSource(
                name=name,
                kind=kind,
                config=config or {},
                priority=priority,
                quota_limit=quota_limit,
                quota_used=quota_used,
                is_active=is_active,
                bulk_capable=bulk_capable,
                cdn_capable=cdn_capable,
            )
            session.add(source)
            await session.commit()
            return source.id

    return _add


@pytest.fixture
def fake_factory() -> FakeAdapterFactory:
    return FakeAdapterFactory()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest_asyncio.fixture(scope="function")
async def manager(session_factory, fake_factory, metrics) -> AsyncGenerator[StorageManager, None]:
    """Storage manager over the test catalog and in-memory adapters."""
    manager = StorageManager(
        session_factory,
        adapter_factory=fake_factory,
        metrics=metrics,
    )
    yield manager
    await manager.close()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, manager) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_manager] = lambda: manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def sample_file_content() -> bytes:
    """Sample file content for testing uploads."""
    return b"fake PDF content for testing"
