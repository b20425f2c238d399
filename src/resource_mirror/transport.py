"""HTTP transport for collection and entity requests.

The collection only needs an opaque ``get(url, params) -> payload`` exchange;
:class:`Transport` is that contract and :class:`HttpTransport` is the
httpx-backed implementation used by default.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 20.0
JSONAPI_ACCEPT = "application/vnd.api+json, application/json"


class Transport(Protocol):
    """Request/response contract used by collections and entities."""

    async def get(self, url: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Issue a GET and return the decoded JSON document."""
        ...

    async def aclose(self) -> None:
        """Release transport resources."""
        ...


class HttpTransport:
    """httpx-backed :class:`Transport`.

    JSON:API error documents (a body carrying an ``errors`` array) are
    returned even for non-2xx statuses so the caller can store them as data.
    Any other non-2xx status raises :class:`httpx.HTTPStatusError`; network
    errors and undecodable bodies propagate unmodified.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        verify_ssl: bool = True,
    ) -> None:
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(
                timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
                verify=verify_ssl,
                headers={"Accept": JSONAPI_ACCEPT},
            )
        )

    async def get(self, url: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        response = await self._http_client.get(
            normalize_url(url), params=dict(params) if params else None
        )
        logger.debug("GET %s -> %d", response.request.url, response.status_code)

        if response.is_success:
            return response.json()

        payload = _error_document(response)
        if payload is not None:
            logger.debug(
                "Server returned %d with %d JSON:API error(s)",
                response.status_code,
                len(payload["errors"]),
            )
            return payload

        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


def _error_document(response: httpx.Response) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("errors"), list):
        return payload
    return None


def normalize_url(url: str) -> str:
    """Ensure *url* carries a scheme; bare hosts default to ``http://``."""
    if url.startswith(("http://", "https://")):
        return url
    return f"http://{url}"
