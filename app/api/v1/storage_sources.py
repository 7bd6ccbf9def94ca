"""
Storage source endpoints.
Read-only views of the configured backends plus connection tests and
adapter cache invalidation. Creating and editing sources is handled by the
admin surface that owns the descriptors.
"""

from fastapi import APIRouter

from app.dependencies import DbSession, Manager
from app.schemas.storage import QuotaInfo, StorageSourceResponse
from app.services.storage_source_service import StorageSourceService

router = APIRouter()


@router.get("", response_model=list[StorageSourceResponse])
async def list_storage_sources(db: DbSession, manager: Manager):
    """
    List every storage source with its quota and pool state.

    Credentials in the per-kind configuration are never returned.
    """
    sources = await StorageSourceService(db).list_all()

    responses = []
    for source in sources:
        response = StorageSourceResponse.model_validate(source)
        response.available = response.available_bytes
        response.loaded = manager.is_loaded(source.id)
        response.load_error = manager.load_error(source.id)
        responses.append(response)
    return responses


@router.get("/{source_id}/quota", response_model=QuotaInfo)
async def get_storage_source_quota(source_id: int, manager: Manager):
    """Quota ledger view of one storage source."""
    return await manager.ledger.get_quota(source_id)


@router.post("/test-all")
async def test_all_storage_sources(manager: Manager):
    """
    Test every active storage source concurrently.

    A failing source never hides the results of the others.
    """
    results = await manager.test_all()
    return {
        "results": {str(source_id): ok for source_id, ok in results.items()},
        "total": len(results),
        "online": sum(1 for ok in results.values() if ok),
    }


@router.post("/{source_id}/test")
async def test_storage_source(source_id: int, manager: Manager):
    """Test one storage source with its current stored configuration."""
    success = await manager.test_source(source_id)
    return {
        "sourceId": source_id,
        "success": success,
        "message": "Connection successful" if success else "Connection failed",
    }


@router.post("/invalidate")
async def invalidate_all_storage_sources(manager: Manager):
    """Drop every cached adapter so the next use rebuilds it."""
    await manager.invalidate_all()
    return {"invalidated": "all"}


@router.post("/{source_id}/invalidate")
async def invalidate_storage_source(source_id: int, manager: Manager):
    """Drop one cached adapter, e.g. after its configuration was edited."""
    await manager.invalidate(source_id)
    return {"invalidated": source_id}
