"""
Health and metrics endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import is_using_sqlite_fallback
from app.dependencies import DbSession, Manager
from app.models.storage_source import StorageSource
from app.services.metrics import get_metrics_collector

router = APIRouter()


async def _quota_totals(db: AsyncSession) -> tuple[int, int, int]:
    """Active source count plus summed quota usage and limits."""
    result = await db.execute(
        select(
            func.count(StorageSource.id),
            func.coalesce(func.sum(StorageSource.quota_used), 0),
            func.coalesce(func.sum(StorageSource.quota_limit), 0),
        ).where(StorageSource.is_active.is_(True))
    )
    count, used, limit = result.one()
    return int(count), int(used), int(limit)


@router.get("/health")
async def health_check(db: DbSession, manager: Manager):
    """
    Service health check endpoint.

    Returns:
        {"status": "ok"} when service is healthy
        {"status": "degraded", "issues": [...]} when there are issues
    """
    issues = []
    warnings = []

    if is_using_sqlite_fallback():
        warnings.append("Using SQLite dev fallback - PostgreSQL not available")

    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        issues.append(f"Database: {str(e)}")

    if issues:
        return {
            "status": "degraded",
            "issues": issues,
        }

    pool = await manager.load_pool()
    if not pool.entries:
        issues.append("No storage source available")
    for failure in pool.failures:
        warnings.append(f"Storage source {failure.descriptor.id} unavailable: {failure.error}")

    response = {
        "status": "degraded" if issues else "ok",
        "database": "sqlite (dev fallback)" if is_using_sqlite_fallback() else "postgresql",
        "storageSources": {
            "loaded": len(pool.entries),
            "failed": len(pool.failures),
        },
    }

    if issues:
        response["issues"] = issues
    if warnings:
        response["warnings"] = warnings

    return response


@router.get("/metrics")
async def metrics(db: DbSession):
    """
    Metrics as JSON: request counts, response times, error rates,
    per-backend storage operations and ledger totals.
    """
    metrics_data = get_metrics_collector().get_metrics()

    try:
        count, used, limit = await _quota_totals(db)
    except Exception:
        count, used, limit = -1, -1, -1

    metrics_data["quota"] = {
        "active_sources": count,
        "used_bytes": used,
        "limit_bytes": limit,
    }
    return metrics_data


@router.get("/metrics/prometheus", response_class=PlainTextResponse)
async def metrics_prometheus(db: DbSession):
    """
    Prometheus text exposition format endpoint.
    Compatible with Prometheus scraping.
    """
    text_output = get_metrics_collector().to_prometheus()

    try:
        count, used, limit = await _quota_totals(db)
    except Exception:
        count = None

    if count is not None:
        text_output += "# HELP storage_sources_active Number of active storage sources\n"
        text_output += "# TYPE storage_sources_active gauge\n"
        text_output += f"storage_sources_active {count}\n\n"
        text_output += "# HELP storage_quota_used_bytes Bytes recorded by the quota ledger\n"
        text_output += "# TYPE storage_quota_used_bytes gauge\n"
        text_output += f"storage_quota_used_bytes {used}\n\n"
        text_output += "# HELP storage_quota_limit_bytes Summed quota limits\n"
        text_output += "# TYPE storage_quota_limit_bytes gauge\n"
        text_output += f"storage_quota_limit_bytes {limit}\n"

    return PlainTextResponse(
        content=text_output,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
