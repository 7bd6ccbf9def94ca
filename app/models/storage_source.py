"""
StorageSource SQLAlchemy model.
One row describes one configured storage backend: its kind, opaque
per-kind configuration, selection priority and quota counters.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    JSON,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class BackendKind(str, enum.Enum):
    """Supported storage backend kinds."""
    R2 = "r2"                  # S3-compatible object storage (Cloudflare R2)
    MINIO = "minio"            # Self-hosted S3-compatible object storage
    QINIU = "qiniu"            # Regional CDN object storage
    UPYUN = "upyun"            # Regional CDN object storage
    CLOUDINARY = "cloudinary"  # CDN media host
    TELEGRAM = "telegram"      # Bot/channel storage
    GITHUB = "github"          # Git repository storage
    CUSTOM = "custom"          # Templated HTTP sink
    LOCAL = "local"            # Local filesystem


# Kinds treated as bulk-capable / CDN-backed unless a descriptor overrides it
BULK_CAPABLE_KINDS = frozenset({BackendKind.R2, BackendKind.QINIU})
CDN_CAPABLE_KINDS = frozenset({
    BackendKind.R2,
    BackendKind.QINIU,
    BackendKind.UPYUN,
    BackendKind.CLOUDINARY,
})


class StorageSource(Base):
    """
    Storage backend descriptor.

    Created and edited by the admin surface; read by the storage layer.
    Only ``quota_used`` is written here, through the quota ledger.
    """
    __tablename__ = "storage_sources"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Human-readable source name",
    )
    kind: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
        comment="Backend kind tag, see BackendKind",
    )
    config: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Opaque per-kind configuration",
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=50,
        index=True,
        comment="Selection priority, higher is preferred",
    )
    quota_limit: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=10 * 1024 * 1024 * 1024,
        comment="Quota limit in bytes",
    )
    quota_used: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Bytes written through this layer, never negative",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
    )
    bulk_capable: Mapped[bool | None] = mapped_column(
        Boolean,
        nullable=True,
        default=None,
        comment="Override for large-object preference, NULL uses the kind default",
    )
    cdn_capable: Mapped[bool | None] = mapped_column(
        Boolean,
        nullable=True,
        default=None,
        comment="Override for media preference, NULL uses the kind default",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<StorageSource(id={self.id}, name={self.name}, kind={self.kind})>"
