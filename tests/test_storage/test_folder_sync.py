"""
Tests for folder synchronisation across storage sources.
"""

import pytest

from app.core.exceptions import ValidationException
from app.models.storage_source import BackendKind
from app.storage.factory import create_adapter
from app.storage.folder_sync import FolderSyncEngine
from app.storage.manager import StorageManager

TELEGRAM_CONFIG = {"botToken": "123:abc", "chatId": "-1001"}


@pytest.fixture
def engine(manager) -> FolderSyncEngine:
    return FolderSyncEngine(manager)


async def adapter_for(manager, source_id: int):
    return (await manager.get_entry(source_id)).adapter


class TestCreateFolder:
    """Folder creation fan-out."""

    @pytest.mark.asyncio
    async def test_creates_on_every_source(self, engine, manager, add_source):
        a = await add_source("a", priority=90)
        b = await add_source("b", priority=10)

        result = await engine.create_folder_across_sources("/docs/2024")

        assert result.success is True
        assert result.affected_sources == 2
        assert [r.source_id for r in result.results] == [a, b]
        for source_id in (a, b):
            assert (await adapter_for(manager, source_id)).folders == {"/docs", "/docs/2024"}

    @pytest.mark.asyncio
    async def test_partial_failure(self, engine, manager, add_source):
        ok = await add_source("ok", priority=90)
        failing = await add_source("failing", priority=10, config={"failOps": ["create_folder"]})

        result = await engine.create_folder_across_sources("/docs")

        assert result.success is False
        assert result.failed_sources == [failing]
        failed = next(r for r in result.results if r.source_id == failing)
        assert "create_folder failed" in failed.error
        assert "/docs" in (await adapter_for(manager, ok)).folders

    @pytest.mark.asyncio
    async def test_uninitialised_source_is_reported(self, engine, add_source):
        ok = await add_source("ok", priority=90)
        broken = await add_source("broken", priority=10, config={"failBuild": True})

        result = await engine.create_folder_across_sources("/docs")

        assert result.success is False
        assert result.affected_sources == 2
        assert result.failed_sources == [broken]
        assert next(r for r in result.results if r.source_id == ok).success is True

    @pytest.mark.asyncio
    async def test_no_sources(self, engine):
        result = await engine.create_folder_across_sources("/docs")

        assert result.success is True
        assert result.results == []

    @pytest.mark.asyncio
    async def test_root_is_rejected(self, engine):
        with pytest.raises(ValidationException):
            await engine.create_folder_across_sources("/")


class TestRenameFolder:
    """Folder rename fan-out."""

    @pytest.mark.asyncio
    async def test_rename_heals_missing_folder(self, engine, manager, add_source):
        """X holds /docs and moves it; Y never had /docs and just gets /papers."""
        x = await add_source("x", priority=90)
        y = await add_source("y", priority=10)
        x_adapter = await adapter_for(manager, x)
        x_adapter.folders.add("/docs")
        x_adapter.files["/docs/a.txt"] = b"a"

        result = await engine.rename_folder_across_sources("/docs", "/papers")

        assert result.success is True
        assert x_adapter.calls_to("move_folder") == [("move_folder", "/docs", "/papers")]
        assert x_adapter.files == {"/papers/a.txt": b"a"}

        y_adapter = await adapter_for(manager, y)
        assert y_adapter.calls_to("move_folder") == []
        assert y_adapter.folders == {"/papers"}

    @pytest.mark.asyncio
    async def test_rename_into_itself(self, engine, add_source):
        await add_source("x")

        with pytest.raises(ValidationException):
            await engine.rename_folder_across_sources("/docs", "/docs/sub")

    @pytest.mark.asyncio
    async def test_rename_to_same_path(self, engine):
        with pytest.raises(ValidationException):
            await engine.rename_folder_across_sources("/docs", "/docs/")

    @pytest.mark.asyncio
    async def test_rename_root(self, engine):
        with pytest.raises(ValidationException):
            await engine.rename_folder_across_sources("/", "/papers")

    @pytest.mark.asyncio
    async def test_sibling_prefix_is_not_nested(self, engine, manager, add_source):
        x = await add_source("x")
        (await adapter_for(manager, x)).folders.add("/docs")

        result = await engine.rename_folder_across_sources("/docs", "/docs-archive")

        assert result.success is True


class TestDeleteFolder:
    """Folder delete fan-out."""

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, engine, manager, add_source):
        x = await add_source("x", priority=90)
        await add_source("y", priority=10)
        (await adapter_for(manager, x)).folders.add("/docs")

        first = await engine.delete_folder_across_sources("/docs")
        second = await engine.delete_folder_across_sources("/docs")

        assert first.success is True
        assert second.success is True
        assert len((await adapter_for(manager, x)).calls_to("delete_folder")) == 1

    @pytest.mark.asyncio
    async def test_non_empty_requires_recursive(self, engine, manager, add_source):
        x = await add_source("x")
        adapter = await adapter_for(manager, x)
        adapter.folders.add("/docs")
        adapter.files["/docs/a.txt"] = b"a"

        refused = await engine.delete_folder_across_sources("/docs")
        removed = await engine.delete_folder_across_sources("/docs", recursive=True)

        assert refused.failed_sources == [x]
        assert "not empty" in refused.results[0].error
        assert removed.success is True
        assert adapter.files == {}

    @pytest.mark.asyncio
    async def test_folderless_source_holds_nothing(self, session_factory, add_source, fake_factory, metrics):
        """A backend without folders never holds the path, so deleting it succeeds there."""

        def adapter_factory(descriptor):
            if descriptor.kind == BackendKind.TELEGRAM:
                return create_adapter(descriptor)
            return fake_factory(descriptor)

        await add_source("disk", priority=90)
        await add_source("tg", priority=10, kind=BackendKind.TELEGRAM, config=TELEGRAM_CONFIG)
        manager = StorageManager(session_factory, adapter_factory=adapter_factory, metrics=metrics)

        try:
            deleted = await FolderSyncEngine(manager).delete_folder_across_sources("/never")
            created = await FolderSyncEngine(manager).create_folder_across_sources("/docs")
        finally:
            await manager.close()

        assert deleted.success is True
        assert [(r.source_name, r.success) for r in deleted.results] == [("disk", True), ("tg", True)]
        assert created.success is False
        assert "does not support" in created.results[1].error

    @pytest.mark.asyncio
    async def test_delete_root(self, engine):
        with pytest.raises(ValidationException):
            await engine.delete_folder_across_sources("")


class TestMergeFolderContents:
    """Merged listings."""

    @pytest.mark.asyncio
    async def test_union_keeps_colliding_files(self, engine, manager, add_source):
        a = await add_source("a", priority=90)
        b = await add_source("b", priority=10)
        a_adapter = await adapter_for(manager, a)
        b_adapter = await adapter_for(manager, b)
        a_adapter.files["/docs/report.pdf"] = b"x" * 10
        b_adapter.files["/docs/report.pdf"] = b"x" * 30
        b_adapter.files["/docs/notes.txt"] = b"x" * 5
        a_adapter.folders.update({"/docs", "/docs/shared"})
        b_adapter.folders.update({"/docs", "/docs/shared", "/docs/only-b"})

        merged = await engine.merge_folder_contents("/docs")

        assert merged.total_files == 3
        assert merged.total_size == 45
        assert sorted((f.name, f.source_id) for f in merged.files) == [
            ("notes.txt", b), ("report.pdf", a), ("report.pdf", b),
        ]
        assert sorted(f.path for f in merged.folders) == ["/docs/only-b", "/docs/shared"]
        assert merged.sources_queried == 2
        assert merged.sources_online == 2

    @pytest.mark.asyncio
    async def test_failing_listing_is_reported(self, engine, manager, add_source):
        ok = await add_source("ok", priority=90)
        down = await add_source("down", priority=50, config={"failOps": ["list_folder"]})
        broken = await add_source("broken", priority=10, config={"failBuild": True})
        (await adapter_for(manager, ok)).files["/a.txt"] = b"abc"

        merged = await engine.merge_folder_contents("/")

        assert merged.sources_queried == 3
        assert merged.sources_online == 1
        statuses = {s.source_id: s for s in merged.source_status}
        assert statuses[ok].status == "online"
        assert statuses[ok].file_count == 1
        assert statuses[down].status == "error"
        assert "list_folder failed" in statuses[down].error
        assert statuses[broken].status == "error"
        assert merged.total_files == 1

    @pytest.mark.asyncio
    async def test_files_are_tagged(self, engine, manager, add_source):
        a = await add_source("primary")
        (await adapter_for(manager, a)).files["/a.txt"] = b"abc"

        merged = await engine.merge_folder_contents("/")

        file = merged.files[0]
        assert file.source_name == "primary"
        assert file.source_kind.value == "local"
        assert file.size == 3

    @pytest.mark.asyncio
    async def test_serialises_camel_case(self, engine, add_source):
        await add_source("a")

        payload = (await engine.merge_folder_contents("/")).model_dump(by_alias=True)

        assert "sourcesQueried" in payload
        assert "sourceStatus" in payload
