"""Shared HTTP plumbing for provider and Cloudflare API clients."""
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from loguru import logger

from burrow.core.exceptions import ApiError


HTTP_STATUS_MESSAGES = {
    400: "Bad request",
    401: "Unauthorized - check credentials",
    403: "Forbidden",
    404: "Not found",
    408: "Timeout",
    409: "Conflict",
    422: "Unprocessable entity",
    429: "Rate limited",
    500: "Server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Timeout",
}


def error_message_for_status(status: int) -> str:
    if status in HTTP_STATUS_MESSAGES:
        return HTTP_STATUS_MESSAGES[status]
    if 500 <= status <= 599:
        return "Server error"
    return "Request failed"


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _body_snippet(body: Any) -> str:
    if isinstance(body, dict):
        for key in ("message", "error"):
            if body.get(key):
                return str(body[key])
        errors = body.get("errors")
        if errors:
            return str(errors)[:200]
    return str(body)[:200]


def raise_api_error(response: httpx.Response) -> None:
    """Raise an :class:`ApiError` describing a failed response.

    Raises:
        ApiError: Always, with ``"[status] <reason>: <snippet>"`` as message.
    """
    body = _decode(response)
    status = response.status_code
    raise ApiError(
        f"[{status}] {error_message_for_status(status)}: {_body_snippet(body)}",
        status=status,
        body=body,
    )


class BaseClient:
    """Base JSON-over-HTTP client.

    Subclasses set ``BASE_URL`` and override :meth:`auth_headers`. A
    transport may be injected for tests (``httpx.MockTransport``).
    """

    BASE_URL = ""

    def __init__(
        self,
        timeout: float = 120.0,
        connect_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._transport = transport

    def auth_headers(self) -> dict[str, str]:
        return {}

    @asynccontextmanager
    async def _http_client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Context manager yielding a configured client.

        Raises:
            ApiError: If the API cannot be reached.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers=self.auth_headers(),
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                yield client
        except httpx.TransportError as e:
            raise ApiError(f"Cannot reach {self.BASE_URL}: {e}") from e

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded body.

        DELETE requests answered with 204 or 404 return None.

        Raises:
            ApiError: For any non-2xx response.
        """
        async with self._http_client() as client:
            response = await client.request(
                method, path, params=params, json=json, **kwargs
            )
        logger.trace(
            "API request", method=method, path=path, status=response.status_code
        )
        if method == "DELETE" and response.status_code in (204, 404):
            return None
        if not response.is_success:
            raise_api_error(response)
        return _decode(response)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request("POST", path, json=body if body is not None else {})

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request("PUT", path, json=body if body is not None else {})

    async def patch(self, path: str, body: Any = None) -> Any:
        return await self.request("PATCH", path, json=body if body is not None else {})

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
