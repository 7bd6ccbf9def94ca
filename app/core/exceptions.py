"""
Custom exceptions for the Storage Federation API.
Every storage backend maps its native failures onto this taxonomy.
"""

from typing import Any


class StorageAPIException(Exception):
    """Base exception for all storage layer errors."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to response dictionary."""
        response = {
            "error": self.error,
            "message": self.message,
        }
        if self.details:
            response["details"] = self.details
        return response


class ValidationException(StorageAPIException):
    """400 - Malformed request (bad path, missing parameters)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            error="validation_failed",
            message=message,
            status_code=400,
            details=details,
        )


class ConfigurationException(StorageAPIException):
    """Missing or invalid backend configuration. Raised at construction time."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            error="configuration_error",
            message=message,
            status_code=500,
            details=details,
        )


class AuthenticationException(StorageAPIException):
    """Credentials rejected by the backend."""

    def __init__(self, message: str = "Backend rejected the credentials", details: dict[str, Any] | None = None):
        super().__init__(
            error="backend_authentication_failed",
            message=message,
            status_code=502,
            details=details,
        )


class PermissionDeniedException(StorageAPIException):
    """Credentials valid but insufficient rights for the operation."""

    def __init__(self, message: str = "Backend denied the operation", details: dict[str, Any] | None = None):
        super().__init__(
            error="backend_permission_denied",
            message=message,
            status_code=502,
            details=details,
        )


class ObjectNotFoundException(StorageAPIException):
    """404 - Object or folder absent on the backend."""

    def __init__(self, path: str, details: dict[str, Any] | None = None):
        super().__init__(
            error="not_found",
            message=f"Object not found: {path}",
            status_code=404,
            details={"path": path, **(details or {})},
        )


class BackendNotFoundException(StorageAPIException):
    """404 - Storage source unknown, inactive, or excluded from the pool."""

    def __init__(self, source_id: int | None = None):
        message = (
            f"Storage source {source_id} not found or inactive"
            if source_id is not None
            else "No active storage source available"
        )
        super().__init__(
            error="backend_not_found",
            message=message,
            status_code=404,
            details={"sourceId": source_id} if source_id is not None else None,
        )


class CapacityExhaustedException(StorageAPIException):
    """507 - No eligible backend has room for the object."""

    def __init__(self, size: int):
        size_mb = size / (1024 * 1024)
        super().__init__(
            error="capacity_exhausted",
            message=f"No storage source has enough free space for {size_mb:.2f}MB",
            status_code=507,
            details={"size": size},
        )


class UnsupportedOperationException(StorageAPIException):
    """501 - The backend's native capabilities do not cover the operation."""

    def __init__(self, operation: str, backend: str):
        super().__init__(
            error="operation_not_supported",
            message=f"{backend} does not support {operation}",
            status_code=501,
            details={"operation": operation, "backend": backend},
        )


class PayloadTooLargeException(StorageAPIException):
    """413 - Upload size exceeds limit."""

    def __init__(self, max_size: int):
        max_size_mb = max_size / (1024 * 1024)
        super().__init__(
            error="payload_too_large",
            message=f"Maximum upload size exceeded ({max_size_mb:.0f}MB limit)",
            status_code=413,
        )


class TransientNetworkException(StorageAPIException):
    """503 - I/O failure talking to the backend. The caller may retry."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            error="backend_unavailable",
            message=message,
            status_code=503,
            details=details,
        )


class StorageException(StorageAPIException):
    """500 - Backend error that fits no narrower category."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            error="storage_error",
            message=message,
            status_code=500,
            details=details,
        )
