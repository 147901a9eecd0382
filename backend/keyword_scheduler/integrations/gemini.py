"""Gemini REST client for embeddings, outlines and articles.

Features:
- Async HTTP client using httpx (direct REST calls, no SDK)
- Embeddings in chunks of 100; a single-item chunk uses embedContent
- Outline drafting with tolerant JSON parsing and a keyword based fallback
- Article generation returning {"title", "html"}
- API key sent as x-goog-api-key header, never logged

Retries are applied by the caller (core.retry). Transport and API failures
raise GeminiError.
"""

import json
import re
import time
from typing import Any

import httpx

from keyword_scheduler.core.config import Settings
from keyword_scheduler.core.logging import ApiLogger, gemini_logger, get_logger
from keyword_scheduler.integrations.base import ArticleRequest
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.keyword import Keyword
from keyword_scheduler.schemas.pipeline import (
    Article,
    Embedding,
    EmbeddingRequest,
    FaqItem,
    GroupSummary,
)
from keyword_scheduler.schemas.settings import ProjectSettings

logger = get_logger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"

EMBED_CHUNK_SIZE = 100

LANGUAGE_NAMES = {
    "en": "English",
    "en-us": "English",
    "en-gb": "English",
    "zh": "Chinese",
    "zh-cn": "Chinese",
    "zh-tw": "Chinese",
    "ko": "Korean",
    "fr": "French",
    "es": "Spanish",
    "de": "German",
    "th": "Thai",
    "vi": "Vietnamese",
}

_CODE_BLOCK_RE = re.compile(r"```json\s*([\s\S]*?)```", re.IGNORECASE)


class GeminiError(Exception):
    """Raised when a Gemini call fails or returns an unusable payload."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


def normalize_model_id(model: str) -> str:
    return model if model.startswith("models/") else f"models/{model}"


def describe_language(code: str) -> str:
    return LANGUAGE_NAMES.get(code.lower(), "Japanese")


def extract_json(text: str) -> str:
    """Pull a JSON document out of a model response.

    Prefers a ```json fenced block, then the span from the first brace or
    bracket to the matching last one.

    Raises:
        ValueError: If no parseable JSON object or array is found.
    """
    match = _CODE_BLOCK_RE.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()

    first_brace = text.find("{")
    first_bracket = text.find("[")
    if first_brace != -1 and (first_bracket == -1 or first_brace < first_bracket):
        start, end = first_brace, text.rfind("}")
    elif first_bracket != -1:
        start, end = first_bracket, text.rfind("]")
    else:
        start, end = -1, -1

    if start != -1 and end > start:
        candidate = text[start : end + 1]
        try:
            json.loads(candidate)
        except json.JSONDecodeError:
            pass
        else:
            return candidate

    raise ValueError("Response did not contain a valid JSON object or array")


def _clean_strings(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    return [item.strip() for item in values if isinstance(item, str) and item.strip()]


class OutlineParser:
    """Turns a model outline response into a GroupSummary.

    Missing pieces are filled from the keyword list so a group always
    receives a usable outline.
    """

    def __init__(
        self,
        representative_kw: str,
        keywords: list[Keyword],
        api_logger: ApiLogger = gemini_logger,
    ) -> None:
        self.representative_kw = representative_kw
        self.keywords = keywords
        self.api_logger = api_logger

    def default_title(self) -> str:
        if self.representative_kw:
            return self.representative_kw
        if self.keywords:
            return self.keywords[0].text
        return "Outline Plan"

    def fallback_h2(self) -> list[str]:
        unique: list[str] = []
        for keyword in self.keywords:
            text = keyword.text.strip()
            if text and text not in unique:
                unique.append(text)
        if not unique:
            return [
                f"Key basics: {self.representative_kw or 'this topic'}",
                "Related topics overview",
                "Practical tips and cautions",
            ]
        return [f"Deep dive: {text}" for text in unique[:5]]

    def fallback(self) -> GroupSummary:
        return GroupSummary(outline_title=self.default_title(), h2=self.fallback_h2())

    def parse(self, text: str) -> GroupSummary:
        try:
            data = json.loads(extract_json(text))
        except ValueError:
            self.api_logger.graceful_fallback("summarize", "unparseable outline response")
            return self.fallback()
        if not isinstance(data, dict):
            self.api_logger.graceful_fallback("summarize", "outline response is not an object")
            return self.fallback()

        title = data.get("outlineTitle")
        outline_title = (
            title.strip() if isinstance(title, str) and title.strip() else self.default_title()
        )
        h2 = _clean_strings(data.get("h2")) or self.fallback_h2()

        h3: dict[str, list[str]] = {}
        if isinstance(data.get("h3"), dict):
            for heading, subheadings in data["h3"].items():
                cleaned = _clean_strings(subheadings)
                if cleaned:
                    h3[heading] = cleaned

        faq: list[FaqItem] = []
        if isinstance(data.get("faq"), list):
            for item in data["faq"]:
                if not isinstance(item, dict):
                    continue
                q, a = item.get("q"), item.get("a")
                if isinstance(q, str) and isinstance(a, str) and q.strip() and a.strip():
                    faq.append(FaqItem(q=q.strip(), a=a.strip()))

        return GroupSummary(outline_title=outline_title, h2=h2, h3=h3, faq=faq)


def build_outline_prompt(
    representative_kw: str, intent: str, keywords: list[Keyword]
) -> str:
    keyword_list = "\n".join(
        f"- {kw.text} (volume: {(kw.metrics or {}).get('avg_monthly', 'n/a')})"
        for kw in keywords
    )
    return "\n".join(
        [
            "You are an SEO strategist drafting a high-quality article outline in natural Japanese.",
            f"Representative keyword: {representative_kw}",
            f"Search intent: {intent}",
            "Use the keyword list to infer searcher problems and desired solutions.",
            "Output requirements (strict):",
            "- Respond ONLY with JSON. No commentary or code fences.",
            '- JSON schema: {"outlineTitle": string, "h2": string[], '
            '"h3": Record<string,string[]>, "faq": Array<{ "q": string, "a": string }>}',
            '- Each heading must be descriptive, natural Japanese, without prefixes like "H2" or numbering.',
            "- h2 should contain 4-6 entries. For headings needing subtopics, "
            "include them as h3[h2Heading] = [...subheadings].",
            "- Provide 2-4 FAQ pairs that address intent-specific concerns.",
            "- Keep outlineTitle concise (<= 28 full-width characters when possible).",
            "Context keywords:",
            keyword_list,
        ]
    )


def build_article_prompt(request: ArticleRequest) -> str:
    topic = request.topic or request.outline.get("outlineTitle") or "ブログ記事"
    language_code = (request.language or "ja").lower()
    language_name = describe_language(language_code)
    if language_code == "ja":
        writer = "Japanese"
        title_guideline = "60 Japanese characters"
        punctuation = "Use Japanese punctuation and full-width characters where appropriate."
    else:
        writer = f"{language_name} bilingual (Japanese/English-capable)"
        title_guideline = "60 characters in the target language"
        punctuation = "Use natural punctuation and typography for the selected language."

    return "\n".join(
        [
            f"You are an expert {writer} SEO copywriter and editor.",
            f"Primary topic: {topic}",
            f"Search intent: {request.intent or 'info'}",
            f"Target language: {language_name}.",
            "Use the provided outline JSON and research JSON to craft a compelling, "
            "comprehensive article.",
            "Formatting rules:",
            f"- Write entirely in natural {language_name}.",
            '- Return valid JSON with keys "title" and "html".',
            f'- "title" should be an engaging headline under {title_guideline}.',
            '- "html" must be a complete <article>...</article> fragment that includes:',
            "  * One <h1> for the main headline (matching the title).",
            "  * Multiple <section> blocks with <h2> / <h3> headings derived from the outline.",
            "  * Rich formatting: <p>, <strong>, <em>, <ul>/<ol>, <blockquote>, "
            "and tables when helpful.",
            f"- {punctuation}",
            "- Avoid Markdown, code fences, script tags, or inline styles.",
            "- Embed key research insights with natural paraphrasing and cite sources "
            "in-text when relevant.",
            "Outline JSON:",
            json.dumps(request.outline, ensure_ascii=False, indent=2),
            "Research JSON:",
            request.research,
        ]
    )


class GeminiClient:
    """Async client for the Gemini generative language REST API.

    Implements the embedding, outline and article collaborator contracts.
    """

    def __init__(
        self,
        api_key: str | None,
        embedding_model: str = "models/text-embedding-004",
        generative_model: str = "models/gemini-2.5-flash",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise GeminiError("Gemini API key is not configured")
        self._api_key = api_key
        self._embedding_model = normalize_model_id(embedding_model)
        self._generative_model = normalize_model_id(generative_model)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiClient":
        return cls(
            settings.gemini_api_key,
            embedding_model=settings.gemini_embedding_model,
            generative_model=settings.gemini_generative_model,
            timeout=settings.gemini_timeout,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=GEMINI_API_URL,
                headers={
                    "x-goog-api-key": self._api_key,
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

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        start_time = time.monotonic()
        gemini_logger.api_call_start(path)
        try:
            response = await client.post(f"/{path}", json=payload)
        except httpx.HTTPError as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            gemini_logger.api_call_error(path, duration_ms, None, str(e), type(e).__name__)
            raise GeminiError(f"Gemini request failed: {e}") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code in (401, 403):
            gemini_logger.auth_failure(response.status_code)
        if response.status_code >= 400:
            gemini_logger.api_call_error(
                path, duration_ms, response.status_code, response.text, "HTTPStatusError"
            )
            raise GeminiError(
                f"Gemini API error {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:1000],
            )

        gemini_logger.api_call_success(path, duration_ms)
        result: dict[str, Any] = response.json()
        return result

    async def _generate_json_text(self, prompt: str) -> str:
        data = await self._post(
            f"{self._generative_model}:generateContent",
            {
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {"responseMimeType": "application/json"},
            },
        )
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "\n".join(part.get("text", "") for part in parts)

    async def _embed_chunk(self, chunk: list[EmbeddingRequest]) -> list[list[float]]:
        if len(chunk) == 1:
            data = await self._post(
                f"{self._embedding_model}:embedContent",
                {"content": {"role": "user", "parts": [{"text": chunk[0].text}]}},
            )
            values = (data.get("embedding") or {}).get("values")
            if not values:
                raise GeminiError("Gemini API returned no embedding vector")
            return [values]

        data = await self._post(
            f"{self._embedding_model}:batchEmbedContents",
            {
                "requests": [
                    {
                        "model": self._embedding_model,
                        "content": {"role": "user", "parts": [{"text": item.text}]},
                    }
                    for item in chunk
                ]
            },
        )
        embeddings = data.get("embeddings") or []
        if not embeddings:
            raise GeminiError("Gemini API returned no embeddings")
        if len(embeddings) != len(chunk):
            raise GeminiError("Gemini embedding count mismatch for chunk")
        return [embedding.get("values") or [] for embedding in embeddings]

    async def embed(self, items: list[EmbeddingRequest]) -> list[Embedding]:
        """Embed keyword texts, preserving input order."""
        if not items:
            return []
        vectors: list[list[float]] = []
        for start in range(0, len(items), EMBED_CHUNK_SIZE):
            vectors.extend(await self._embed_chunk(items[start : start + EMBED_CHUNK_SIZE]))
        if len(vectors) != len(items):
            raise GeminiError("Gemini embedding count mismatch")
        return [Embedding(id=item.id, vector=vector) for item, vector in zip(items, vectors)]

    async def summarize(
        self,
        group: KeywordGroup,
        keywords: list[Keyword],
        settings: ProjectSettings,
    ) -> GroupSummary:
        """Draft an outline for a group.

        Unparseable responses fall back to a keyword based outline instead of
        raising.
        """
        representative_kw = (group.cluster_stats or {}).get("topKw") or group.title
        prompt = build_outline_prompt(representative_kw, group.intent, keywords)
        text = await self._generate_json_text(prompt)
        return OutlineParser(representative_kw, keywords).parse(text)

    async def generate_article(self, request: ArticleRequest) -> Article:
        """Generate an article from an outline and research notes.

        Raises:
            GeminiError: If the response lacks a title or html.
        """
        text = await self._generate_json_text(build_article_prompt(request))
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GeminiError(f"Failed to parse article response: {e}") from e
        if not isinstance(data, dict):
            raise GeminiError("Article response is not an object")
        if not data.get("title") or not data.get("html"):
            raise GeminiError("Article response missing title or html fields")
        return Article(title=str(data["title"]).strip(), html=str(data["html"]).strip())
