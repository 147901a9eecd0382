"""Grok client for outlines, articles and keyword clustering.

Talks to an OpenAI-compatible chat completions endpoint with JSON response
mode. Outline prompts, outline parsing and article prompts are shared with
the Gemini client so both models produce the same summary shape.

Retries are applied by the caller (core.retry). Transport and API failures
raise GrokError.
"""

import json
import time
from typing import Any

import httpx

from keyword_scheduler.core.config import Settings
from keyword_scheduler.core.logging import get_logger, grok_logger
from keyword_scheduler.integrations.base import ArticleRequest
from keyword_scheduler.integrations.gemini import (
    OutlineParser,
    build_article_prompt,
    build_outline_prompt,
    extract_json,
)
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.keyword import Keyword
from keyword_scheduler.schemas.pipeline import Article, EmbeddingRequest, GroupSummary
from keyword_scheduler.schemas.settings import ProjectSettings

logger = get_logger(__name__)

GROK_MODEL = "grok"

CHAT_COMPLETIONS_PATH = "/chat/completions"


class GrokError(Exception):
    """Raised when a Grok call fails or returns an unusable payload."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


def build_cluster_prompt(items: list[EmbeddingRequest]) -> str:
    keyword_list = ",\n".join(
        json.dumps({"id": item.id, "text": item.text}, ensure_ascii=False) for item in items
    )
    return "\n".join(
        [
            "You are an expert SEO content strategist.",
            "Group the following keywords into clusters based on their semantic meaning "
            "and user intent.",
            "Output requirements (strict):",
            '- Respond ONLY with a JSON object containing a "clusters" key.',
            '- The "clusters" key should contain an array of arrays, where each inner '
            "array is a group of keyword IDs.",
            '- Example: {"clusters": [["id1", "id2"], ["id3", "id4"]]}',
            "Keywords:",
            f"[{keyword_list}]",
        ]
    )


def parse_clusters(text: str) -> list[list[str]]:
    """Read {"clusters": [[id, ...], ...]} from a model response.

    Non-string ids and empty clusters are dropped. An unparseable response
    yields no clusters.
    """
    try:
        data = json.loads(extract_json(text))
    except ValueError:
        grok_logger.graceful_fallback("cluster_keywords", "unparseable clusters response")
        return []
    clusters = data.get("clusters") if isinstance(data, dict) else None
    if not isinstance(clusters, list):
        grok_logger.graceful_fallback("cluster_keywords", "clusters key missing")
        return []

    result: list[list[str]] = []
    for cluster in clusters:
        if not isinstance(cluster, list):
            continue
        ids = [item for item in cluster if isinstance(item, str) and item]
        if ids:
            result.append(ids)
    return result


class GrokClient:
    """Async client for Grok chat completions.

    Implements the outline, article and keyword cluster collaborator
    contracts.
    """

    def __init__(
        self,
        api_key: str | None,
        generative_model: str = "grok-4-fast-non-reasoning",
        base_url: str = "https://api.groq.com/openai/v1",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise GrokError("Grok API key is not configured")
        self._api_key = api_key
        self._generative_model = generative_model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GrokClient":
        return cls(
            settings.grok_api_key,
            generative_model=settings.grok_generative_model,
            base_url=settings.grok_api_url,
            timeout=settings.grok_timeout,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
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

    async def _complete_json(self, prompt: str) -> str:
        """Send one user prompt and return the message content."""
        client = await self._get_client()
        start_time = time.monotonic()
        grok_logger.api_call_start(CHAT_COMPLETIONS_PATH, model=self._generative_model)
        try:
            response = await client.post(
                CHAT_COMPLETIONS_PATH,
                json={
                    "model": self._generative_model,
                    "messages": [{"role": "user", "content": prompt}],
                    "response_format": {"type": "json_object"},
                },
            )
        except httpx.HTTPError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            grok_logger.api_call_error(
                CHAT_COMPLETIONS_PATH, duration_ms, None, str(e), type(e).__name__
            )
            raise GrokError(f"Grok request failed: {e}") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code in (401, 403):
            grok_logger.auth_failure(response.status_code)
        if response.status_code >= 400:
            grok_logger.api_call_error(
                CHAT_COMPLETIONS_PATH,
                duration_ms,
                response.status_code,
                response.text,
                "HTTPStatusError",
            )
            raise GrokError(
                f"Grok API error {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:1000],
            )

        grok_logger.api_call_success(CHAT_COMPLETIONS_PATH, duration_ms)
        data: dict[str, Any] = response.json()
        choices = data.get("choices") or []
        if not choices:
            return ""
        return str((choices[0].get("message") or {}).get("content") or "")

    async def summarize(
        self,
        group: KeywordGroup,
        keywords: list[Keyword],
        settings: ProjectSettings,
    ) -> GroupSummary:
        """Draft an outline for a group, falling back to a keyword outline."""
        representative_kw = (group.cluster_stats or {}).get("topKw") or group.title
        prompt = build_outline_prompt(representative_kw, group.intent, keywords)
        text = await self._complete_json(prompt)
        return OutlineParser(representative_kw, keywords, api_logger=grok_logger).parse(text)

    async def generate_article(self, request: ArticleRequest) -> Article:
        """Generate an article from an outline and research notes.

        Raises:
            GrokError: If the response lacks a title or html.
        """
        text = await self._complete_json(build_article_prompt(request))
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GrokError(f"Failed to parse article response: {e}") from e
        if not isinstance(data, dict):
            raise GrokError("Article response is not an object")
        if not data.get("title") or not data.get("html"):
            raise GrokError("Article response missing title or html fields")
        return Article(title=str(data["title"]).strip(), html=str(data["html"]).strip())

    async def cluster_keywords(self, items: list[EmbeddingRequest]) -> list[list[str]]:
        """Ask the model to group keywords; returns clusters of keyword ids."""
        if not items:
            return []
        return parse_clusters(await self._complete_json(build_cluster_prompt(items)))
