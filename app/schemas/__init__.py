"""
Pydantic schemas for storage values and request/response validation.
"""

from app.schemas.storage import (
    StorageSourceDescriptor,
    StorageSourceResponse,
    QuotaInfo,
    FileInfo,
    FolderInfo,
    FolderContents,
    UploadResult,
    SourceFileInfo,
    SourceStatus,
    MergedFolderContents,
    SourceSyncResult,
    SyncResult,
    FolderCreateRequest,
    FolderRenameRequest,
)
from app.schemas.error import ErrorResponse

__all__ = [
    # Descriptor schemas
    "StorageSourceDescriptor",
    "StorageSourceResponse",
    "QuotaInfo",
    # Object and folder schemas
    "FileInfo",
    "FolderInfo",
    "FolderContents",
    "UploadResult",
    # Fan-out schemas
    "SourceFileInfo",
    "SourceStatus",
    "MergedFolderContents",
    "SourceSyncResult",
    "SyncResult",
    # Request schemas
    "FolderCreateRequest",
    "FolderRenameRequest",
    # Error schemas
    "ErrorResponse",
]
