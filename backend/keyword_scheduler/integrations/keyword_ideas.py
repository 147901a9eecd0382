"""Keyword idea client for the ad keyword volume API.

POSTs the node title as a seed keyword and converts the response into
KeywordIdea objects. The API answers either {"results": [...]} or a mapping
keyed by keyword text. Competition arrives as a 0-100 index and is scaled
to 0-1 with 3 decimals. Ideas below min_volume or above max_competition are
dropped and the list is truncated to ads.max_results.

Retries are applied by the caller (core.retry); every failure raises
KeywordIdeaError.
"""

import time
from typing import Any

import httpx

from keyword_scheduler.core.config import Settings
from keyword_scheduler.core.logging import get_logger, keyword_ideas_logger
from keyword_scheduler.models.node import Node
from keyword_scheduler.schemas.pipeline import KeywordIdea, KeywordMetrics
from keyword_scheduler.schemas.settings import ProjectSettings

logger = get_logger(__name__)


class KeywordIdeaError(Exception):
    """Raised when the keyword volume API call fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


def normalize_competition(item: dict[str, Any]) -> float | None:
    """Scale a 0-100 competition index to 0-1, 3 decimals."""
    value = item.get("competition")
    if not isinstance(value, (int, float)):
        value = item.get("competitionIndex")
    if not isinstance(value, (int, float)):
        return None
    clamped = max(0.0, min(100.0, float(value)))
    return round(clamped / 100, 3)


def parse_ideas(payload: Any) -> list[KeywordIdea]:
    """Convert either response shape into KeywordIdea objects."""
    if isinstance(payload, dict) and isinstance(payload.get("results"), list):
        items = [
            {**item, "keyword": item.get("keyword") or item.get("keywordText") or ""}
            for item in payload["results"]
            if isinstance(item, dict)
        ]
    elif isinstance(payload, dict):
        items = [
            {**metrics, "keyword": keyword}
            for keyword, metrics in payload.items()
            if isinstance(metrics, dict)
        ]
    else:
        raise KeywordIdeaError("Unexpected keyword API response shape")

    ideas = []
    for item in items:
        if not item["keyword"]:
            continue
        ideas.append(
            KeywordIdea(
                keyword=item["keyword"],
                metrics=KeywordMetrics(
                    avg_monthly=item.get("avgMonthlySearches"),
                    competition=normalize_competition(item),
                    cpc_micros=item.get("highTopOfPageBidMicros"),
                ),
            )
        )
    return ideas


class KeywordIdeaClient:
    """Async client for the keyword volume API.

    Args:
        endpoint: Full URL of the keyword volume API.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        endpoint: str | None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeywordIdeaClient":
        return cls(settings.keyword_volume_api_url, timeout=settings.keyword_volume_timeout)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def generate_ideas(
        self, node: Node, settings: ProjectSettings
    ) -> list[KeywordIdea]:
        """Fetch keyword ideas for a node title.

        Raises:
            KeywordIdeaError: If the endpoint is missing or the call fails.
        """
        if not self._endpoint:
            raise KeywordIdeaError("KEYWORD_VOLUME_API_URL is not configured")

        payload = {
            "keywords": [node.title],
            "options": {
                "includeAdultKeywords": True,
                "languageConstant": str(settings.ads.language_id),
                "geoTargetConstants": [str(loc) for loc in settings.ads.location_ids],
            },
        }
        client = await self._get_client()
        start_time = time.monotonic()
        keyword_ideas_logger.api_call_start(self._endpoint, node_id=node.id)
        try:
            response = await client.post(self._endpoint, json=payload)
        except httpx.HTTPError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            keyword_ideas_logger.api_call_error(
                self._endpoint, duration_ms, None, str(e), type(e).__name__
            )
            raise KeywordIdeaError(f"Keyword API request failed: {e}") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code >= 400:
            keyword_ideas_logger.api_call_error(
                self._endpoint,
                duration_ms,
                response.status_code,
                response.text,
                "HTTPStatusError",
            )
            raise KeywordIdeaError(
                f"Keyword API error {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:1000],
            )

        ideas = parse_ideas(response.json())
        thresholds = settings.thresholds
        kept = [
            idea
            for idea in ideas
            if (idea.metrics.avg_monthly or 0) >= thresholds.min_volume
            and (idea.metrics.competition or 0) <= thresholds.max_competition
        ][: settings.max_results]

        keyword_ideas_logger.api_call_success(
            self._endpoint,
            duration_ms,
            node_id=node.id,
            returned=len(ideas),
            kept=len(kept),
        )
        return kept
