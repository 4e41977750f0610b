"""Async REST transport for the remit backend.

Normalizes every failure into the exception types the classifier understands:

- non-2xx responses raise ``APIError(status, body)``;
- 401 additionally clears the stored credential before raising;
- a request timeout raises ``APIError(408)``;
- any other transport failure raises ``NetworkError``.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import TYPE_CHECKING, Any, Literal, Self

import httpx

from ..exceptions import APIError, NetworkError

if TYPE_CHECKING:
    from ..storage import CredentialStore

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

HTTPMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class RemitAPIClient:
    """Thin JSON client with bearer-token auth."""

    def __init__(
        self,
        base_url: str,
        *,
        credentials: CredentialStore | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @property
    def credentials(self) -> CredentialStore | None:
        return self._credentials

    async def request(
        self,
        method: HTTPMethod,
        path: str,
        body: Any = None,
        *,
        public: bool = False,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            body: JSON-serializable payload, omitted when None.
            public: Skip the Authorization header.
            timeout: Per-request override of the client timeout.

        Returns:
            Parsed JSON, or None for 204 and undecodable bodies.
        """
        headers: dict[str, str] = {}
        if not public and self._credentials is not None:
            token = self._credentials.get()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        kwargs: dict[str, Any] = {"headers": headers}
        if body is not None:
            kwargs["json"] = body
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            log.warning("%s %s timed out", method, path)
            raise APIError(408, {"error": "Request timed out"}) from e
        except httpx.TransportError as e:
            log.warning("%s %s failed at transport level: %s", method, path, e)
            raise NetworkError(f"Network request failed: {e}") from e

        if response.status_code == 401:
            if self._credentials is not None:
                self._credentials.clear()
            raise APIError(401, _json_or_none(response))

        if not response.is_success:
            raise APIError(response.status_code, _json_or_none(response))

        if response.status_code == 204:
            return None
        return _json_or_none(response)

    async def get(self, path: str, **options: Any) -> Any:
        return await self.request("GET", path, **options)

    async def post(self, path: str, body: Any = None, **options: Any) -> Any:
        return await self.request("POST", path, body, **options)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
