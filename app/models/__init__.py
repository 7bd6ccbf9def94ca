"""
SQLAlchemy ORM models for the storage source catalog.
"""

from app.models.storage_source import (
    StorageSource,
    BackendKind,
    BULK_CAPABLE_KINDS,
    CDN_CAPABLE_KINDS,
)

__all__ = [
    "StorageSource",
    "BackendKind",
    "BULK_CAPABLE_KINDS",
    "CDN_CAPABLE_KINDS",
]
