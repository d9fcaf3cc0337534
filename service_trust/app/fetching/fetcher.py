"""
Async HTTP fetcher used for registry and JWKS downloads.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from shared.errors import FetchNetworkError, FetchTimeoutError
from shared.logging import get_logger


@dataclass(frozen=True)
class FetchResponse:
    """Status and decoded body of a completed GET."""

    status: int
    body: Any
    text: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpFetcher:
    """GET JSON documents with a per-call timeout.

    A shared ``httpx.AsyncClient`` may be injected; otherwise one is created
    lazily and owned by the fetcher.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client
        self._owns_client = client is None
        self.logger = get_logger("trust.http")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get(self, uri: str, timeout_ms: int = 1000) -> FetchResponse:
        """GET ``uri``; the timeout bounds the whole request.

        Raises:
            FetchTimeoutError: the request did not finish in ``timeout_ms``.
            FetchNetworkError: the request failed below the HTTP layer.
        """
        timeout = timeout_ms / 1000.0
        client = self._get_client()

        try:
            response = await asyncio.wait_for(client.get(uri, timeout=timeout), timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            self.logger.debug("HTTP fetch timed out", uri=uri, timeout_ms=timeout_ms)
            raise FetchTimeoutError(uri, timeout_ms) from exc
        except httpx.HTTPError as exc:
            self.logger.debug("HTTP fetch failed", uri=uri, error=str(exc))
            raise FetchNetworkError(uri, str(exc)) from exc

        text = response.text
        try:
            body = json.loads(text) if text else None
        except ValueError:
            body = None

        return FetchResponse(
            status=response.status_code,
            body=body,
            text=text,
            headers=dict(response.headers),
        )
