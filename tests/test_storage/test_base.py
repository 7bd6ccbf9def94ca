"""
Tests for the adapter contract helpers.
"""

import pytest

from app.core.exceptions import ValidationException
from app.storage.base import (
    basename,
    guess_content_type,
    normalize_path,
    path_prefixes,
    to_folder_key,
    to_key,
)

from conftest import InMemoryAdapter


class TestPathHelpers:
    """Tests for logical path normalisation."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("docs/a.txt", "/docs/a.txt"),
            ("/docs//a.txt", "/docs/a.txt"),
            ("/docs/", "/docs"),
            ("docs\\sub\\a.txt", "/docs/sub/a.txt"),
            ("./docs", "/docs"),
            ("", "/"),
            ("/", "/"),
        ],
    )
    def test_normalize_path(self, raw: str, expected: str):
        assert normalize_path(raw) == expected

    def test_normalize_rejects_parent_segments(self):
        with pytest.raises(ValidationException):
            normalize_path("/docs/../etc/passwd")

    def test_path_prefixes(self):
        assert path_prefixes("/a/b/c") == ["/a", "/a/b", "/a/b/c"]
        assert path_prefixes("/") == []

    def test_keys(self):
        assert to_key("/a/b.txt") == "a/b.txt"
        assert to_folder_key("/a/b") == "a/b/"
        assert to_folder_key("/") == ""

    def test_basename_and_content_type(self):
        assert basename("/docs/report.pdf") == "report.pdf"
        assert guess_content_type("report.pdf") == "application/pdf"
        assert guess_content_type("blob.unknownext") == "application/octet-stream"


class TestEnsureFolderPath:
    """Tests for the default folder-chain helper."""

    @pytest.mark.asyncio
    async def test_creates_every_missing_prefix(self):
        adapter = InMemoryAdapter({})

        await adapter.ensure_folder_path("/a/b/c")

        assert [c[1] for c in adapter.calls_to("create_folder")] == ["/a", "/a/b", "/a/b/c"]

    @pytest.mark.asyncio
    async def test_idempotent(self):
        """A second call issues no further creations."""
        adapter = InMemoryAdapter({})
        await adapter.ensure_folder_path("/a/b/c")
        created = len(adapter.calls_to("create_folder"))

        await adapter.ensure_folder_path("/a/b/c")

        assert len(adapter.calls_to("create_folder")) == created

    @pytest.mark.asyncio
    async def test_completes_partial_chain(self):
        adapter = InMemoryAdapter({})
        adapter.folders.add("/a")

        await adapter.ensure_folder_path("/a/b")

        assert [c[1] for c in adapter.calls_to("create_folder")] == ["/a/b"]


class TestUploadContract:
    """upload reports failures through the result."""

    @pytest.mark.asyncio
    async def test_backend_error_becomes_failed_result(self):
        adapter = InMemoryAdapter({"failOps": ["upload"]})

        result = await adapter.upload(b"data", "/a.txt")

        assert result.success is False
        assert "upload failed" in result.error
        assert result.path is None

    @pytest.mark.asyncio
    async def test_size_limit(self):
        adapter = InMemoryAdapter({"maxFileSize": 3})

        result = await adapter.upload(b"data", "/a.txt")

        assert result.success is False
        assert adapter.calls_to("upload") == []
