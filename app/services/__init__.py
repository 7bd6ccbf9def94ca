"""
Business logic services for the Storage Federation API.
Services handle core operations separate from API endpoints.
"""

from app.services.metrics import MetricsCollector, get_metrics_collector
from app.services.quota_ledger import QuotaLedger
from app.services.storage_source_service import StorageSourceService

__all__ = [
    "MetricsCollector",
    "QuotaLedger",
    "StorageSourceService",
    "get_metrics_collector",
]
