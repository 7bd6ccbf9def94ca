"""
Pydantic schemas shared by the storage adapters, the manager and the API.
Attributes are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.storage_source import BULK_CAPABLE_KINDS, CDN_CAPABLE_KINDS


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialising field names as camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ===================
# Descriptor
# ===================

class StorageSourceDescriptor(CamelModel):
    """Read-only view of a persisted storage source."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    id: int
    name: str
    kind: str
    config: dict[str, Any] = Field(default_factory=dict, exclude=True)
    priority: int = 50
    quota_limit: int = 0
    quota_used: int = 0
    is_active: bool = True
    bulk_capable: bool | None = None
    cdn_capable: bool | None = None

    @property
    def available_bytes(self) -> int:
        """Free space according to the ledger. Negative when over quota."""
        return self.quota_limit - self.quota_used

    @property
    def is_bulk_capable(self) -> bool:
        if self.bulk_capable is not None:
            return self.bulk_capable
        return self.kind in BULK_CAPABLE_KINDS

    @property
    def is_cdn_capable(self) -> bool:
        if self.cdn_capable is not None:
            return self.cdn_capable
        return self.kind in CDN_CAPABLE_KINDS


class QuotaInfo(CamelModel):
    """Ledger view of one source's quota."""

    source_id: int
    used: int
    limit: int
    available: int
    usage_percent: float | None = None


class StorageSourceResponse(StorageSourceDescriptor):
    """Descriptor as returned by the API, with pool state."""

    available: int = 0
    loaded: bool = False
    load_error: str | None = None


# ===================
# Objects and folders
# ===================

class FileInfo(CamelModel):
    """Metadata for one stored object."""

    name: str
    path: str
    size: int = 0
    last_modified: datetime | None = None
    etag: str | None = None
    content_type: str | None = None


class FolderInfo(CamelModel):
    """Metadata for one (real or simulated) folder."""

    name: str
    path: str
    last_modified: datetime | None = None
    item_count: int | None = None


class FolderContents(CamelModel):
    """Listing of one folder on one backend."""

    files: list[FileInfo] = Field(default_factory=list)
    folders: list[FolderInfo] = Field(default_factory=list)
    total_files: int = 0
    total_size: int = 0

    @classmethod
    def build(cls, files: list[FileInfo], folders: list[FolderInfo]) -> "FolderContents":
        return cls(
            files=files,
            folders=folders,
            total_files=len(files),
            total_size=sum(f.size for f in files),
        )


class UploadResult(CamelModel):
    """
    Outcome of a single-object upload.

    Failures are reported through ``success``/``error`` rather than raised.
    """

    success: bool
    url: str | None = None
    path: str | None = None
    error: str | None = None
    size: int | None = None
    hash: str | None = None
    metadata: dict[str, Any] | None = None
    source_id: int | None = None

    @classmethod
    def ok(
        cls,
        path: str,
        size: int,
        url: str | None = None,
        hash: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "UploadResult":
        return cls(success=True, path=path, size=size, url=url, hash=hash, metadata=metadata)

    @classmethod
    def failed(cls, error: str) -> "UploadResult":
        return cls(success=False, error=error)


# ===================
# Merged views and fan-out outcomes
# ===================

class SourceFileInfo(FileInfo):
    """A file tagged with the backend that reported it."""

    source_id: int
    source_name: str
    source_kind: str


class SourceStatus(CamelModel):
    """Per-backend outcome of a merged listing."""

    source_id: int
    source_name: str
    status: Literal["online", "error"]
    error: str | None = None
    file_count: int = 0
    folder_count: int = 0


class MergedFolderContents(CamelModel):
    """Union of every backend's listing for one logical folder."""

    files: list[SourceFileInfo] = Field(default_factory=list)
    folders: list[FolderInfo] = Field(default_factory=list)
    total_files: int = 0
    total_size: int = 0
    source_status: list[SourceStatus] = Field(default_factory=list)
    sources_queried: int = 0
    sources_online: int = 0


class SourceSyncResult(CamelModel):
    """Per-backend outcome of a folder create/rename/delete fan-out."""

    source_id: int
    source_name: str
    success: bool
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class SyncResult(CamelModel):
    """Aggregate of a folder fan-out. ``success`` is the AND of all results."""

    success: bool
    results: list[SourceSyncResult] = Field(default_factory=list)
    affected_sources: int = 0
    failed_sources: list[int] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[SourceSyncResult]) -> "SyncResult":
        return cls(
            success=all(r.success for r in results),
            results=results,
            affected_sources=len(results),
            failed_sources=[r.source_id for r in results if not r.success],
        )


# ===================
# Request bodies
# ===================

class FolderCreateRequest(CamelModel):
    path: str = Field(..., min_length=1, description="Logical folder path, e.g. /docs/2024")


class FolderRenameRequest(CamelModel):
    old_path: str = Field(..., min_length=1)
    new_path: str = Field(..., min_length=1)
