"""
Storage abstraction layer for the Storage Federation API.
Supports R2, MinIO, Qiniu, Upyun, Cloudinary, Telegram, GitHub, custom HTTP
sinks and local disk.
"""

from app.storage.base import StorageAdapter, normalize_path, guess_content_type
from app.storage.factory import create_adapter, register_adapter, supported_kinds
from app.storage.manager import StorageManager, PoolEntry, PoolSnapshot, get_storage_manager
from app.storage.folder_sync import FolderSyncEngine
from app.storage.placement import HeuristicPlacementPolicy

__all__ = [
    "StorageAdapter",
    "StorageManager",
    "PoolEntry",
    "PoolSnapshot",
    "FolderSyncEngine",
    "HeuristicPlacementPolicy",
    "create_adapter",
    "register_adapter",
    "supported_kinds",
    "get_storage_manager",
    "normalize_path",
    "guess_content_type",
]
