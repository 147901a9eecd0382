"""WordPress REST API publisher (application password, basic auth)."""

import time
from typing import Any

import httpx

from keyword_scheduler.core.logging import get_logger, publisher_logger
from keyword_scheduler.integrations.base import PostPayload
from keyword_scheduler.schemas.settings import WordpressTarget

logger = get_logger(__name__)


class PublishError(Exception):
    """Raised when a blog platform rejects or fails a request."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


async def send(
    client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
) -> httpx.Response:
    """Send a publisher request, logging it and raising PublishError on failure."""
    start_time = time.monotonic()
    publisher_logger.api_call_start(url, method=method)
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        duration_ms = (time.monotonic() - start_time) * 1000
        publisher_logger.api_call_error(url, duration_ms, None, str(e), type(e).__name__)
        raise PublishError(f"Publish request failed: {e}") from e

    duration_ms = (time.monotonic() - start_time) * 1000
    if response.status_code in (401, 403):
        publisher_logger.auth_failure(response.status_code)
    if response.status_code >= 400:
        publisher_logger.api_call_error(
            url, duration_ms, response.status_code, response.text, "HTTPStatusError"
        )
        raise PublishError(
            f"Publish API error {response.status_code}",
            status_code=response.status_code,
            response_body=response.text[:1000],
        )
    publisher_logger.api_call_success(url, duration_ms, method=method)
    return response


class WordpressPublisher:
    """Publishes posts through /wp-json/wp/v2/posts."""

    def __init__(
        self,
        target: WordpressTarget,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._target = target
        self._base_url = target.url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                auth=httpx.BasicAuth(self._target.username, self._target.password),
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def post(self, payload: PostPayload) -> str:
        """Publish a post and return its id."""
        client = await self._get_client()
        response = await send(
            client,
            "POST",
            f"{self._base_url}/wp-json/wp/v2/posts",
            json={"title": payload.title, "content": payload.content, "status": "publish"},
        )
        post_id = response.json().get("id")
        if post_id is None:
            raise PublishError("WordPress response did not include a post id")
        return str(post_id)

    async def get_url(self, post_id: str) -> str:
        client = await self._get_client()
        response = await send(client, "GET", f"{self._base_url}/wp-json/wp/v2/posts/{post_id}")
        link = response.json().get("link")
        if not link:
            raise PublishError(f"WordPress post {post_id} has no link")
        return str(link)
