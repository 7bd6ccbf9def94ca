"""
Tests for the local filesystem storage adapter.
"""

import pytest
import pytest_asyncio

from app.core.exceptions import ConfigurationException, ObjectNotFoundException, StorageException
from app.storage.local import LocalStorageAdapter


class TestLocalStorageAdapter:
    """Tests for local filesystem storage."""

    @pytest.fixture
    def storage(self, tmp_path) -> LocalStorageAdapter:
        """Create a local storage adapter for testing."""
        return LocalStorageAdapter({"basePath": str(tmp_path / "store")}, name="Local test")

    def test_missing_base_path(self):
        """Construction fails fast without a base path."""
        with pytest.raises(ConfigurationException) as exc:
            LocalStorageAdapter({})

        assert "basePath" in exc.value.message

    def test_legacy_path_key(self, tmp_path):
        storage = LocalStorageAdapter({"path": str(tmp_path)})

        assert storage.base_path == tmp_path.resolve()

    @pytest.mark.asyncio
    async def test_connect_creates_base_path(self, storage: LocalStorageAdapter):
        await storage.connect()

        assert storage.base_path.is_dir()

    @pytest.mark.asyncio
    async def test_test_connection(self, storage: LocalStorageAdapter):
        await storage.connect()

        assert await storage.test_connection() is True
        assert not (storage.base_path / ".write-test").exists()

    @pytest.mark.asyncio
    async def test_test_connection_missing_directory(self, storage: LocalStorageAdapter):
        """The connection check reports False instead of raising."""
        assert await storage.test_connection() is False

    @pytest.mark.asyncio
    async def test_upload(self, storage: LocalStorageAdapter):
        """Test uploading bytes."""
        content = b"test file content"

        result = await storage.upload(content, "test/file.txt", "text/plain")

        assert result.success is True
        assert result.path == "/test/file.txt"
        assert result.size == len(content)
        assert result.hash is not None
        assert (storage.base_path / "test" / "file.txt").read_bytes() == content

    @pytest.mark.asyncio
    async def test_upload_too_large(self, tmp_path):
        storage = LocalStorageAdapter({"basePath": str(tmp_path), "maxFileSize": 4})

        result = await storage.upload(b"12345", "/big.bin")

        assert result.success is False
        assert "exceeds" in result.error
        assert not (tmp_path / "big.bin").exists()

    @pytest.mark.asyncio
    async def test_upload_rejects_relative_segments(self, storage: LocalStorageAdapter):
        result = await storage.upload(b"x", "../escape.txt")

        assert result.success is False

    @pytest.mark.asyncio
    async def test_download(self, storage: LocalStorageAdapter):
        """Test downloading bytes."""
        content = b"test file content"
        await storage.upload(content, "test/file.txt", "text/plain")

        assert await storage.download("test/file.txt") == content

    @pytest.mark.asyncio
    async def test_download_missing(self, storage: LocalStorageAdapter):
        with pytest.raises(ObjectNotFoundException):
            await storage.download("/missing.txt")

    @pytest.mark.asyncio
    async def test_download_streaming(self, storage: LocalStorageAdapter):
        """Test streaming download."""
        content = b"test file content"
        await storage.upload(content, "test/file.txt", "text/plain")

        chunks = []
        async for chunk in storage.download_stream("test/file.txt", chunk_size=4):
            chunks.append(chunk)

        assert b"".join(chunks) == content
        assert len(chunks) > 1

    @pytest.mark.asyncio
    async def test_delete(self, storage: LocalStorageAdapter):
        """Deleting a file keeps its parent folder."""
        await storage.upload(b"test content", "test/file.txt", "text/plain")

        assert await storage.delete("test/file.txt") is True
        assert not (storage.base_path / "test" / "file.txt").exists()
        assert await storage.folder_exists("/test")

    @pytest.mark.asyncio
    async def test_delete_nonexistent(self, storage: LocalStorageAdapter):
        """Test deleting non-existent file."""
        assert await storage.delete("nonexistent/file.txt") is False

    @pytest.mark.asyncio
    async def test_get_file_info(self, storage: LocalStorageAdapter):
        """Test getting file size."""
        content = b"test file content with some length"
        await storage.upload(content, "test/file.txt", "text/plain")

        info = await storage.get_file_info("test/file.txt")

        assert info.size == len(content)
        assert info.name == "file.txt"
        assert info.path == "/test/file.txt"
        assert info.content_type == "text/plain"

    @pytest.mark.asyncio
    async def test_move_and_copy(self, storage: LocalStorageAdapter):
        await storage.upload(b"data", "/a.txt")

        await storage.copy_file("/a.txt", "/copies/b.txt")
        await storage.move_file("/a.txt", "/moved/c.txt")

        assert await storage.download("/copies/b.txt") == b"data"
        assert await storage.download("/moved/c.txt") == b"data"
        with pytest.raises(ObjectNotFoundException):
            await storage.get_file_info("/a.txt")

    def test_get_url(self, storage: LocalStorageAdapter):
        """Test getting file URL."""
        assert storage.get_url("/test/file.txt") == "/storage/test/file.txt"

    @pytest.mark.asyncio
    async def test_nested_directories(self, storage: LocalStorageAdapter):
        """Test creating nested directory structure."""
        content = b"nested content"
        path = "deep/nested/path/to/file.txt"

        await storage.upload(content, path, "text/plain")

        assert await storage.folder_exists("/deep/nested/path/to")
        assert await storage.download(path) == content


class TestLocalFolders:
    """Folder operations on real directories."""

    @pytest_asyncio.fixture
    async def storage(self, tmp_path) -> LocalStorageAdapter:
        storage = LocalStorageAdapter({"basePath": str(tmp_path)})
        await storage.connect()
        return storage

    @pytest.mark.asyncio
    async def test_create_and_exists(self, storage: LocalStorageAdapter):
        assert not await storage.folder_exists("/docs")

        await storage.create_folder("/docs")

        assert await storage.folder_exists("/docs")

    @pytest.mark.asyncio
    async def test_list_folder(self, storage: LocalStorageAdapter):
        await storage.create_folder("/docs/drafts")
        await storage.upload(b"aaa", "/docs/a.txt")
        await storage.upload(b"bb", "/docs/b.txt")

        contents = await storage.list_folder("/docs")

        assert [f.name for f in contents.files] == ["a.txt", "b.txt"]
        assert [f.path for f in contents.folders] == ["/docs/drafts"]
        assert contents.total_files == 2
        assert contents.total_size == 5

    @pytest.mark.asyncio
    async def test_list_missing_folder_is_empty(self, storage: LocalStorageAdapter):
        contents = await storage.list_folder("/nowhere")

        assert contents.files == []
        assert contents.folders == []

    @pytest.mark.asyncio
    async def test_delete_non_empty_requires_recursive(self, storage: LocalStorageAdapter):
        await storage.upload(b"x", "/docs/a.txt")

        with pytest.raises(StorageException):
            await storage.delete_folder("/docs")

        await storage.delete_folder("/docs", recursive=True)
        assert not await storage.folder_exists("/docs")

    @pytest.mark.asyncio
    async def test_delete_missing_folder(self, storage: LocalStorageAdapter):
        await storage.delete_folder("/ghost")

    @pytest.mark.asyncio
    async def test_move_folder(self, storage: LocalStorageAdapter):
        await storage.upload(b"x", "/docs/a.txt")

        await storage.move_folder("/docs", "/papers")

        assert not await storage.folder_exists("/docs")
        assert await storage.download("/papers/a.txt") == b"x"

    @pytest.mark.asyncio
    async def test_move_folder_onto_existing(self, storage: LocalStorageAdapter):
        await storage.create_folder("/docs")
        await storage.create_folder("/papers")

        with pytest.raises(StorageException):
            await storage.move_folder("/docs", "/papers")

    @pytest.mark.asyncio
    async def test_move_missing_folder(self, storage: LocalStorageAdapter):
        with pytest.raises(ObjectNotFoundException):
            await storage.move_folder("/docs", "/papers")
