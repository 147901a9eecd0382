"""Tavily search client used for article research."""

import time
from typing import Any

import httpx

from keyword_scheduler.core.config import Settings
from keyword_scheduler.core.logging import get_logger, tavily_logger

logger = get_logger(__name__)

TAVILY_API_URL = "https://api.tavily.com"


class TavilyError(Exception):
    """Raised when a Tavily search fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TavilyClient:
    """Async client for the Tavily search API."""

    def __init__(
        self,
        api_key: str | None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "TavilyClient":
        return cls(settings.tavily_api_key, timeout=settings.tavily_timeout)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=TAVILY_API_URL,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def search(self, topic: str, max_results: int = 5) -> list[dict[str, Any]]:
        """Search the web for a topic.

        Returns:
            The `results` list of the response (title, url, content, score).

        Raises:
            TavilyError: If the key is missing or the request fails.
        """
        if not self._api_key:
            raise TavilyError("TAVILY_API_KEY is not configured")

        client = await self._get_client()
        start_time = time.monotonic()
        tavily_logger.api_call_start("/search", topic=topic[:100])
        try:
            response = await client.post(
                "/search",
                json={
                    "query": topic,
                    "max_results": max_results,
                    "search_depth": "basic",
                },
            )
        except httpx.HTTPError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            tavily_logger.api_call_error("/search", duration_ms, None, str(e), type(e).__name__)
            raise TavilyError(f"Tavily request failed: {e}") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code in (401, 403):
            tavily_logger.auth_failure(response.status_code)
        if response.status_code >= 400:
            tavily_logger.api_call_error(
                "/search", duration_ms, response.status_code, response.text, "HTTPStatusError"
            )
            raise TavilyError(
                f"Tavily API error {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:1000],
            )

        results = response.json().get("results") or []
        tavily_logger.api_call_success("/search", duration_ms, results=len(results))
        return list(results)
