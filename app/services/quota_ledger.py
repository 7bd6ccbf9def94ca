"""
Quota ledger.
Tracks bytes written through the storage layer per storage source. Every
change is a single UPDATE so concurrent writers never lose an update.
"""

import logging

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import BackendNotFoundException
from app.models.storage_source import StorageSource
from app.schemas.storage import QuotaInfo

logger = logging.getLogger(__name__)


class QuotaLedger:
    """Per-source usage counter with a zero floor."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def increment(self, source_id: int, size: int) -> None:
        """Add ``size`` bytes to a source's usage."""
        if size <= 0:
            return

        async with self.session_factory() as session:
            await session.execute(
                update(StorageSource)
                .where(StorageSource.id == source_id)
                .values(quota_used=StorageSource.quota_used + size)
            )
            await session.commit()

    async def decrement(self, source_id: int, size: int) -> None:
        """
        Subtract ``size`` bytes from a source's usage, clamping at zero.

        Usage can drift below the true value when objects were written
        outside this layer; the clamp keeps the counter non-negative.
        """
        if size <= 0:
            return

        async with self.session_factory() as session:
            used = await session.scalar(
                select(StorageSource.quota_used).where(StorageSource.id == source_id)
            )
            await session.execute(
                update(StorageSource)
                .where(StorageSource.id == source_id)
                .values(
                    quota_used=case(
                        (StorageSource.quota_used < size, 0),
                        else_=StorageSource.quota_used - size,
                    )
                )
            )
            await session.commit()

        if used is not None and used < size:
            logger.warning(
                "Quota for source %s clamped at zero (used=%s, decrement=%s)",
                source_id, used, size,
            )

    async def get_quota(self, source_id: int) -> QuotaInfo:
        async with self.session_factory() as session:
            source = await session.get(StorageSource, source_id)

        if source is None:
            raise BackendNotFoundException(source_id)

        limit = source.quota_limit
        used = source.quota_used
        return QuotaInfo(
            source_id=source.id,
            used=used,
            limit=limit,
            available=limit - used,
            usage_percent=round(used / limit * 100, 2) if limit > 0 else None,
        )
