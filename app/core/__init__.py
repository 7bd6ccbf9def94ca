"""Core utilities and exceptions for the Storage Federation API."""

from app.core.exceptions import (
    StorageAPIException,
    ValidationException,
    ConfigurationException,
    AuthenticationException,
    PermissionDeniedException,
    ObjectNotFoundException,
    BackendNotFoundException,
    CapacityExhaustedException,
    UnsupportedOperationException,
    PayloadTooLargeException,
    TransientNetworkException,
    StorageException,
)

__all__ = [
    "StorageAPIException",
    "ValidationException",
    "ConfigurationException",
    "AuthenticationException",
    "PermissionDeniedException",
    "ObjectNotFoundException",
    "BackendNotFoundException",
    "CapacityExhaustedException",
    "UnsupportedOperationException",
    "PayloadTooLargeException",
    "TransientNetworkException",
    "StorageException",
]
