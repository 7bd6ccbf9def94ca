"""
Lightweight Prometheus-compatible metrics collector.

Tracks HTTP request counts and latency plus per-backend storage operation
counts, failures and transferred bytes.
"""

import time
from collections import defaultdict
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


class MetricsCollector:
    """
    In-process metrics collector.

    Exposes its counters as a dictionary and in Prometheus text format.
    """

    def __init__(self) -> None:
        self._request_count: dict[str, int] = defaultdict(int)
        self._error_count: dict[str, int] = defaultdict(int)
        self._response_time_sum: dict[str, float] = defaultdict(float)
        self._response_time_count: dict[str, int] = defaultdict(int)
        self._status_counts: dict[int, int] = defaultdict(int)

        # Keyed by (backend name, operation)
        self._op_count: dict[tuple[str, str], int] = defaultdict(int)
        self._op_failures: dict[tuple[str, str], int] = defaultdict(int)
        self._bytes: dict[tuple[str, str], int] = defaultdict(int)

        self._start_time: float = time.time()

    def record_request(
        self,
        method: str,
        path: str,
        status_code: int,
        duration: float,
    ) -> None:
        """Record a completed request."""
        key = f"{method} {path}"
        self._request_count[key] += 1
        self._response_time_sum[key] += duration
        self._response_time_count[key] += 1
        self._status_counts[status_code] += 1

        if status_code >= 400:
            self._error_count[key] += 1

    def record_operation(
        self,
        backend: str,
        operation: str,
        success: bool,
        size: int = 0,
    ) -> None:
        """Record one storage operation against a backend."""
        key = (backend, operation)
        self._op_count[key] += 1
        if not success:
            self._op_failures[key] += 1
        elif size > 0:
            self._bytes[key] += size

    def get_metrics(self) -> dict[str, Any]:
        """Get metrics as a structured dictionary."""
        total_requests = sum(self._request_count.values())
        total_errors = sum(self._error_count.values())
        uptime = time.time() - self._start_time

        storage: dict[str, dict[str, Any]] = {}
        for (backend, operation), count in sorted(self._op_count.items()):
            storage.setdefault(backend, {})[operation] = {
                "count": count,
                "failures": self._op_failures.get((backend, operation), 0),
                "bytes": self._bytes.get((backend, operation), 0),
            }

        return {
            "uptime_seconds": round(uptime, 2),
            "total_requests": total_requests,
            "total_errors": total_errors,
            "error_rate": round(total_errors / total_requests, 4) if total_requests > 0 else 0,
            "requests_by_endpoint": dict(self._request_count),
            "errors_by_endpoint": dict(self._error_count),
            "status_code_counts": {str(k): v for k, v in sorted(self._status_counts.items())},
            "avg_response_time_ms": {
                k: round((self._response_time_sum[k] / self._response_time_count[k]) * 1000, 2)
                for k in self._response_time_count
            },
            "storage_operations": storage,
        }

    def to_prometheus(self) -> str:
        """
        Export metrics in Prometheus text exposition format.
        See: https://prometheus.io/docs/instrumenting/exposition_formats/
        """
        lines: list[str] = []
        uptime = time.time() - self._start_time

        lines.append("# HELP storage_uptime_seconds Time since service start in seconds")
        lines.append("# TYPE storage_uptime_seconds gauge")
        lines.append(f"storage_uptime_seconds {uptime:.2f}")
        lines.append("")

        lines.append("# HELP storage_http_requests_total Total HTTP requests")
        lines.append("# TYPE storage_http_requests_total counter")
        for key, count in sorted(self._request_count.items()):
            method, path = key.split(" ", 1)
            lines.append(
                f'storage_http_requests_total{{method="{method}",path="{path}"}} {count}'
            )
        lines.append("")

        lines.append("# HELP storage_http_errors_total Total HTTP errors (4xx/5xx)")
        lines.append("# TYPE storage_http_errors_total counter")
        for key, count in sorted(self._error_count.items()):
            method, path = key.split(" ", 1)
            lines.append(
                f'storage_http_errors_total{{method="{method}",path="{path}"}} {count}'
            )
        lines.append("")

        lines.append("# HELP storage_http_response_time_seconds Average response time in seconds")
        lines.append("# TYPE storage_http_response_time_seconds gauge")
        for key in sorted(self._response_time_count.keys()):
            method, path = key.split(" ", 1)
            avg = self._response_time_sum[key] / self._response_time_count[key]
            lines.append(
                f'storage_http_response_time_seconds{{method="{method}",path="{path}"}} {avg:.6f}'
            )
        lines.append("")

        lines.append("# HELP storage_backend_operations_total Storage operations per backend")
        lines.append("# TYPE storage_backend_operations_total counter")
        for (backend, operation), count in sorted(self._op_count.items()):
            lines.append(
                f'storage_backend_operations_total{{backend="{backend}",operation="{operation}"}} {count}'
            )
        lines.append("")

        lines.append("# HELP storage_backend_failures_total Failed storage operations per backend")
        lines.append("# TYPE storage_backend_failures_total counter")
        for (backend, operation), count in sorted(self._op_failures.items()):
            lines.append(
                f'storage_backend_failures_total{{backend="{backend}",operation="{operation}"}} {count}'
            )
        lines.append("")

        lines.append("# HELP storage_backend_bytes_total Bytes transferred per backend")
        lines.append("# TYPE storage_backend_bytes_total counter")
        for (backend, operation), total in sorted(self._bytes.items()):
            lines.append(
                f'storage_backend_bytes_total{{backend="{backend}",operation="{operation}"}} {total}'
            )
        lines.append("")

        return "\n".join(lines) + "\n"


# Global singleton
_metrics_collector: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    ASGI middleware that records request metrics.

    Numeric path segments (storage source ids) are collapsed to ``{id}``
    so they aggregate under one endpoint.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Skip metrics endpoints themselves
        if "/metrics" in request.url.path:
            return await call_next(request)

        start = time.time()
        response = await call_next(request)
        duration = time.time() - start

        normalized_path = "/".join(
            "{id}" if part.isdigit() else part
            for part in request.url.path.split("/")
        )

        get_metrics_collector().record_request(
            method=request.method,
            path=normalized_path,
            status_code=response.status_code,
            duration=duration,
        )

        return response
