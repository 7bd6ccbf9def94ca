"""
Storage source service - read access to the persisted backend descriptors.
"""

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.storage_source import StorageSource
from app.schemas.storage import StorageSourceDescriptor


class StorageSourceService:
    """Service class for storage source queries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_all(self) -> Sequence[StorageSource]:
        """
        List every storage source, active or not.

        Returns:
            Sources ordered by priority (highest first), then id
        """
        query = select(StorageSource).order_by(
            StorageSource.priority.desc(),
            StorageSource.id.asc(),
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def list_active(self) -> list[StorageSourceDescriptor]:
        """Active sources as descriptors, highest priority first."""
        query = (
            select(StorageSource)
            .where(StorageSource.is_active.is_(True))
            .order_by(StorageSource.priority.desc(), StorageSource.id.asc())
        )
        result = await self.db.execute(query)
        return [StorageSourceDescriptor.model_validate(s) for s in result.scalars().all()]

    async def get_active(self, source_id: int) -> StorageSourceDescriptor | None:
        """A single active source, or None when unknown or inactive."""
        source = await self.db.get(StorageSource, source_id)
        if source is None or not source.is_active:
            return None
        return StorageSourceDescriptor.model_validate(source)
