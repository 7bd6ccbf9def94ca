"""
Tests for the quota ledger.
"""

import asyncio
import logging

import pytest

from app.core.exceptions import BackendNotFoundException
from app.services.quota_ledger import QuotaLedger


@pytest.fixture
def ledger(session_factory) -> QuotaLedger:
    return QuotaLedger(session_factory)


@pytest.mark.asyncio
async def test_increment(ledger, add_source):
    source_id = await add_source("a", quota_used=10)

    await ledger.increment(source_id, 25)

    assert (await ledger.get_quota(source_id)).used == 35


@pytest.mark.asyncio
async def test_decrement(ledger, add_source):
    source_id = await add_source("a", quota_used=100)

    await ledger.decrement(source_id, 40)

    assert (await ledger.get_quota(source_id)).used == 60


@pytest.mark.asyncio
async def test_decrement_clamps_at_zero(ledger, add_source, caplog):
    source_id = await add_source("a", quota_used=10)

    with caplog.at_level(logging.WARNING, logger="app.services.quota_ledger"):
        await ledger.decrement(source_id, 100)

    assert (await ledger.get_quota(source_id)).used == 0
    assert "clamped at zero" in caplog.text


@pytest.mark.asyncio
async def test_non_positive_sizes_are_ignored(ledger, add_source):
    source_id = await add_source("a", quota_used=10)

    await ledger.increment(source_id, 0)
    await ledger.decrement(source_id, -5)

    assert (await ledger.get_quota(source_id)).used == 10


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost(ledger, add_source):
    source_id = await add_source("a")

    await asyncio.gather(*(ledger.increment(source_id, 1) for _ in range(20)))

    assert (await ledger.get_quota(source_id)).used == 20


@pytest.mark.asyncio
async def test_get_quota(ledger, add_source):
    source_id = await add_source("a", quota_limit=200, quota_used=50)

    quota = await ledger.get_quota(source_id)

    assert quota.limit == 200
    assert quota.available == 150
    assert quota.usage_percent == 25.0


@pytest.mark.asyncio
async def test_get_quota_without_limit(ledger, add_source):
    source_id = await add_source("unmetered", quota_limit=0)

    assert (await ledger.get_quota(source_id)).usage_percent is None


@pytest.mark.asyncio
async def test_get_quota_unknown(ledger):
    with pytest.raises(BackendNotFoundException):
        await ledger.get_quota(404)
