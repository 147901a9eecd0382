"""Tests for the Gemini REST client and outline parsing."""

import json

import httpx
import pytest

from keyword_scheduler.integrations.base import ArticleRequest
from keyword_scheduler.integrations.gemini import (
    GeminiClient,
    GeminiError,
    OutlineParser,
    build_article_prompt,
    extract_json,
    normalize_model_id,
)
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.keyword import Keyword
from keyword_scheduler.schemas.pipeline import EmbeddingRequest
from keyword_scheduler.schemas.settings import ProjectSettings


def _text_response(text: str) -> httpx.Response:
    return httpx.Response(
        200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]}
    )


def _client(handler) -> GeminiClient:
    return GeminiClient(
        "secret-key",
        embedding_model="text-embedding-004",
        transport=httpx.MockTransport(handler),
    )


def _keyword(text: str) -> Keyword:
    return Keyword(id=text, text=text, metrics={"avg_monthly": 100})


def _group() -> KeywordGroup:
    return KeywordGroup(
        id="g1", title="東京 ホテル", intent="info", cluster_stats={"topKw": "東京 ホテル 安い"}
    )


class TestHelpers:
    def test_normalize_model_id(self):
        assert normalize_model_id("gemini-2.5-flash") == "models/gemini-2.5-flash"
        assert normalize_model_id("models/x") == "models/x"

    def test_extract_json_from_fence(self):
        assert extract_json('note\n```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_extract_json_from_prose(self):
        assert json.loads(extract_json('Here: {"a": [1, 2]} done')) == {"a": [1, 2]}
        assert json.loads(extract_json("list [1, 2] end")) == [1, 2]

    def test_extract_json_failure(self):
        with pytest.raises(ValueError):
            extract_json("no json here {")

    def test_article_prompt_language(self):
        request = ArticleRequest(
            outline={"outlineTitle": "T"}, research="[]", topic="", intent="", language="en"
        )
        prompt = build_article_prompt(request)
        assert "Target language: English." in prompt
        assert "Primary topic: T" in prompt


class TestOutlineParser:
    def test_parses_and_cleans(self):
        parser = OutlineParser("東京 ホテル", [_keyword("東京 ホテル")])
        summary = parser.parse(
            json.dumps(
                {
                    "outlineTitle": " 東京のホテル ",
                    "h2": ["選び方", "", 3],
                    "h3": {"選び方": ["立地", " "], "空": []},
                    "faq": [{"q": "安い?", "a": "はい"}, {"q": "", "a": "x"}],
                }
            )
        )
        assert summary.outline_title == "東京のホテル"
        assert summary.h2 == ["選び方"]
        assert summary.h3 == {"選び方": ["立地"]}
        assert [item.q for item in summary.faq] == ["安い?"]

    def test_fallback_from_keywords(self):
        parser = OutlineParser("", [_keyword("a"), _keyword("a"), _keyword("b")])
        summary = parser.parse("not json at all")
        assert summary.outline_title == "a"
        assert summary.h2 == ["Deep dive: a", "Deep dive: b"]

    def test_missing_fields_filled(self):
        parser = OutlineParser("東京 ホテル", [])
        summary = parser.parse('{"h2": []}')
        assert summary.outline_title == "東京 ホテル"
        assert len(summary.h2) == 3


class TestEmbed:
    @pytest.mark.asyncio
    async def test_single_item_uses_embed_content(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"embedding": {"values": [0.1, 0.2]}})

        client = _client(handler)
        embeddings = await client.embed([EmbeddingRequest(id="k1", text="東京")])
        await client.close()

        assert embeddings[0].id == "k1"
        assert embeddings[0].vector == [0.1, 0.2]
        assert seen[0].url.path == "/v1beta/models/text-embedding-004:embedContent"
        assert seen[0].headers["x-goog-api-key"] == "secret-key"

    @pytest.mark.asyncio
    async def test_batches_in_chunks_of_100(self):
        sizes: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            sizes.append(len(body["requests"]))
            assert body["requests"][0]["model"] == "models/text-embedding-004"
            return httpx.Response(
                200, json={"embeddings": [{"values": [1.0]} for _ in body["requests"]]}
            )

        items = [EmbeddingRequest(id=str(i), text=f"kw {i}") for i in range(150)]
        embeddings = await _client(handler).embed(items)

        assert sizes == [100, 50]
        assert [e.id for e in embeddings] == [str(i) for i in range(150)]

    @pytest.mark.asyncio
    async def test_count_mismatch(self):
        handler = lambda request: httpx.Response(200, json={"embeddings": [{"values": [1.0]}]})
        items = [EmbeddingRequest(id=str(i), text="x") for i in range(3)]

        with pytest.raises(GeminiError, match="mismatch"):
            await _client(handler).embed(items)

    @pytest.mark.asyncio
    async def test_api_error(self):
        handler = lambda request: httpx.Response(403, text="forbidden")

        with pytest.raises(GeminiError) as exc_info:
            await _client(handler).embed([EmbeddingRequest(id="k", text="x")])

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_empty_input(self):
        assert await _client(lambda request: httpx.Response(500)).embed([]) == []


class TestGeneration:
    @pytest.mark.asyncio
    async def test_summarize(self):
        prompts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            prompts.append(body["contents"][0]["parts"][0]["text"])
            return _text_response('{"outlineTitle": "ホテル選び", "h2": ["立地"]}')

        summary = await _client(handler).summarize(
            _group(), [_keyword("東京 ホテル 安い")], ProjectSettings()
        )

        assert summary.outline_title == "ホテル選び"
        assert "Representative keyword: 東京 ホテル 安い" in prompts[0]

    @pytest.mark.asyncio
    async def test_summarize_falls_back_on_garbage(self):
        handler = lambda request: _text_response("I cannot help with that")

        summary = await _client(handler).summarize(_group(), [], ProjectSettings())

        assert summary.outline_title == "東京 ホテル 安い"

    @pytest.mark.asyncio
    async def test_generate_article(self):
        handler = lambda request: _text_response('{"title": " T ", "html": "<article/>"}')
        request = ArticleRequest(
            outline={}, research="[]", topic="t", intent="info", language="ja"
        )

        article = await _client(handler).generate_article(request)

        assert article.title == "T"
        assert article.html == "<article/>"

    @pytest.mark.asyncio
    async def test_generate_article_missing_html(self):
        handler = lambda request: _text_response('{"title": "T"}')
        request = ArticleRequest(outline={}, research="[]", topic="t", intent="info", language="ja")

        with pytest.raises(GeminiError, match="missing title or html"):
            await _client(handler).generate_article(request)


def test_missing_api_key():
    with pytest.raises(GeminiError):
        GeminiClient(None)
