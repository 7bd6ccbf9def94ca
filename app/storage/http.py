"""
Shared plumbing for adapters that talk to their backend over HTTP.
Owns the httpx client lifecycle and maps HTTP failures onto the
storage exception taxonomy.
"""

from typing import Any

import httpx

from app.core.exceptions import (
    AuthenticationException,
    ObjectNotFoundException,
    PermissionDeniedException,
    StorageException,
    TransientNetworkException,
)
from app.storage.base import StorageAdapter


def raise_for_backend_status(
    response: httpx.Response,
    backend: str,
    path: str | None = None,
) -> None:
    """Raise the taxonomy exception matching a failed HTTP response."""
    status = response.status_code
    if status < 400:
        return

    details = {"backend": backend, "status": status}
    if path is not None:
        details["path"] = path

    if status == 401:
        raise AuthenticationException(f"{backend} rejected the credentials", details=details)
    if status == 403:
        raise PermissionDeniedException(f"{backend} denied the operation", details=details)
    if status == 404:
        raise ObjectNotFoundException(path or str(response.request.url), details=details)
    if status == 429 or status >= 500:
        raise TransientNetworkException(
            f"{backend} unavailable: {status} {response.reason_phrase}",
            details=details,
        )
    raise StorageException(
        message=f"{backend} request failed: {status} {response.text[:200]}",
        details=details,
    )


class HttpStorageAdapter(StorageAdapter):
    """
    Base class for httpx-backed adapters.

    A preconfigured ``http_client`` may be injected (tests pass one built on
    ``httpx.MockTransport``). Injected clients are not closed on disconnect.
    """

    def __init__(
        self,
        config: dict[str, Any],
        name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, name)
        self._client = http_client
        self._owns_client = http_client is None

    def _client_options(self) -> dict[str, Any]:
        """Keyword arguments for the owned ``httpx.AsyncClient``."""
        return {}

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(**self._client_options())
            self._owns_client = True
        return self._client

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(**self._client_options())
            self._owns_client = True

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        path: str | None = None,
        allow_status: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request and map transport or status failures.

        Statuses listed in ``allow_status`` are returned to the caller
        instead of being raised.
        """
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkException(
                f"Failed to reach {self.display_name}: {e}",
                details={"backend": self.display_name},
            ) from e

        if response.status_code not in allow_status:
            raise_for_backend_status(response, self.display_name, path)
        return response

    def _json(
        self,
        response: httpx.Response,
        path: str | None = None,
        expected: type | tuple[type, ...] = dict,
    ) -> Any:
        """
        Decoded JSON body of a response.

        Raises:
            StorageException: The body is not JSON or not of the expected shape
        """
        details: dict[str, Any] = {"backend": self.display_name, "status": response.status_code}
        if path is not None:
            details["path"] = path

        try:
            payload = response.json()
        except ValueError as e:
            raise StorageException(
                message=f"{self.display_name} returned a non-JSON response: {response.text[:200]}",
                details=details,
            ) from e

        if not isinstance(payload, expected):
            raise StorageException(
                message=f"{self.display_name} returned an unexpected response: {response.text[:200]}",
                details=details,
            )
        return payload
