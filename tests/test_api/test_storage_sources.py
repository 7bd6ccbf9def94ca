"""
Tests for storage source endpoints.
"""

import pytest
from httpx import AsyncClient

from app.models.storage_source import BackendKind


@pytest.mark.asyncio
async def test_list_storage_sources(client: AsyncClient, add_source):
    low = await add_source("disk", priority=10, config={"basePath": "/srv/storage"})
    high = await add_source(
        "r2-main", priority=90, kind=BackendKind.R2,
        config={"secretAccessKey": "do-not-leak"}, quota_limit=1000, quota_used=250,
    )

    response = await client.get("/api/v1/storage-sources")

    assert response.status_code == 200
    data = response.json()
    assert [s["id"] for s in data] == [high, low]
    assert data[0]["kind"] == "r2"
    assert data[0]["available"] == 750
    assert data[0]["quotaUsed"] == 250
    assert "config" not in data[0]
    assert "do-not-leak" not in response.text


@pytest.mark.asyncio
async def test_list_shows_pool_state(client: AsyncClient, add_source, manager):
    ok = await add_source("ok")
    broken = await add_source("broken", config={"failBuild": True})
    await manager.load_pool()

    data = {s["id"]: s for s in (await client.get("/api/v1/storage-sources")).json()}

    assert data[ok]["loaded"] is True
    assert data[ok]["loadError"] is None
    assert data[broken]["loaded"] is False
    assert "token" in data[broken]["loadError"]


@pytest.mark.asyncio
async def test_list_includes_unknown_kind(client: AsyncClient, add_source):
    await add_source("disk")
    legacy = await add_source("legacy", kind="dropbox")

    response = await client.get("/api/v1/storage-sources")

    assert response.status_code == 200
    assert {s["id"]: s["kind"] for s in response.json()}[legacy] == "dropbox"


@pytest.mark.asyncio
async def test_get_quota(client: AsyncClient, add_source):
    source_id = await add_source("a", quota_limit=400, quota_used=100)

    response = await client.get(f"/api/v1/storage-sources/{source_id}/quota")

    assert response.status_code == 200
    assert response.json() == {
        "sourceId": source_id,
        "used": 100,
        "limit": 400,
        "available": 300,
        "usagePercent": 25.0,
    }


@pytest.mark.asyncio
async def test_get_quota_unknown(client: AsyncClient):
    response = await client.get("/api/v1/storage-sources/999/quota")

    assert response.status_code == 404
    assert response.json()["error"] == "backend_not_found"


@pytest.mark.asyncio
async def test_test_all(client: AsyncClient, add_source):
    ok = await add_source("ok")
    down = await add_source("down", config={"testRaises": True})

    response = await client.post("/api/v1/storage-sources/test-all")

    assert response.status_code == 200
    data = response.json()
    assert data["results"] == {str(ok): True, str(down): False}
    assert data["total"] == 2
    assert data["online"] == 1


@pytest.mark.asyncio
async def test_test_one(client: AsyncClient, add_source):
    down = await add_source("down", config={"healthy": False})

    data = (await client.post(f"/api/v1/storage-sources/{down}/test")).json()

    assert data == {"sourceId": down, "success": False, "message": "Connection failed"}


@pytest.mark.asyncio
async def test_test_unknown(client: AsyncClient):
    response = await client.post("/api/v1/storage-sources/999/test")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_invalidate(client: AsyncClient, add_source, manager, fake_factory):
    source_id = await add_source("a")
    await manager.load_pool()

    response = await client.post(f"/api/v1/storage-sources/{source_id}/invalidate")

    assert response.status_code == 200
    assert response.json() == {"invalidated": source_id}
    assert not manager.is_loaded(source_id)


@pytest.mark.asyncio
async def test_invalidate_all(client: AsyncClient, add_source, manager):
    a = await add_source("a")
    b = await add_source("b")
    await manager.load_pool()

    response = await client.post("/api/v1/storage-sources/invalidate")

    assert response.status_code == 200
    assert not manager.is_loaded(a)
    assert not manager.is_loaded(b)
