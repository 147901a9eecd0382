"""Tests for the Grok chat completions client."""

import json

import httpx
import pytest

from keyword_scheduler.integrations.base import ArticleRequest
from keyword_scheduler.integrations.grok import (
    GrokClient,
    GrokError,
    build_cluster_prompt,
    parse_clusters,
)
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.keyword import Keyword
from keyword_scheduler.schemas.pipeline import EmbeddingRequest
from keyword_scheduler.schemas.settings import ProjectSettings
from tests.conftest import get_test_settings


def _chat_response(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _client(handler) -> GrokClient:
    return GrokClient(
        "grok-key", generative_model="grok-test", transport=httpx.MockTransport(handler)
    )


def _article_request() -> ArticleRequest:
    return ArticleRequest(
        outline={"outlineTitle": "T"}, research="[]", topic="t", intent="info", language="ja"
    )


class TestParseClusters:
    def test_reads_clusters(self):
        text = '```json\n{"clusters": [["a", "b"], ["c", 4, ""], []]}\n```'
        assert parse_clusters(text) == [["a", "b"], ["c"]]

    def test_unusable_responses(self):
        assert parse_clusters("no json") == []
        assert parse_clusters('{"groups": [["a"]]}') == []
        assert parse_clusters('[["a"]]') == []

    def test_prompt_lists_keywords(self):
        prompt = build_cluster_prompt([EmbeddingRequest(id="k1", text="東京 ホテル")])
        assert '{"id": "k1", "text": "東京 ホテル"}' in prompt
        assert '"clusters"' in prompt


class TestGrokClient:
    def test_requires_api_key(self):
        with pytest.raises(GrokError, match="not configured"):
            GrokClient(None)

    def test_from_settings(self):
        settings = get_test_settings(grok_api_key="k", grok_generative_model="grok-x")
        client = GrokClient.from_settings(settings)
        assert client._generative_model == "grok-x"
        assert client._base_url == "https://api.groq.com/openai/v1"

    @pytest.mark.asyncio
    async def test_cluster_request_shape(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _chat_response('{"clusters": [["k1", "k2"]]}')

        client = _client(handler)
        clusters = await client.cluster_keywords(
            [EmbeddingRequest(id="k1", text="a"), EmbeddingRequest(id="k2", text="b")]
        )
        await client.close()

        assert clusters == [["k1", "k2"]]
        [request] = seen
        assert str(request.url) == "https://api.groq.com/openai/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer grok-key"
        body = json.loads(request.content)
        assert body["model"] == "grok-test"
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0]["role"] == "user"

    @pytest.mark.asyncio
    async def test_cluster_empty_input_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = _client(handler)
        assert await client.cluster_keywords([]) == []

    @pytest.mark.asyncio
    async def test_summarize_parses_outline(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return _chat_response(
                json.dumps({"outlineTitle": "東京のホテル", "h2": ["選び方"], "h3": {}, "faq": []})
            )

        client = _client(handler)
        group = KeywordGroup(id="g1", title="東京 ホテル", intent="info", cluster_stats={})
        summary = await client.summarize(group, [], ProjectSettings())
        await client.close()

        assert summary.outline_title == "東京のホテル"
        assert summary.h2 == ["選び方"]

    @pytest.mark.asyncio
    async def test_summarize_falls_back_on_empty_choices(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": []})

        client = _client(handler)
        keyword = Keyword(id="k1", text="東京 ホテル", metrics={})
        group = KeywordGroup(id="g1", title="東京 ホテル", intent="info", cluster_stats={})
        summary = await client.summarize(group, [keyword], ProjectSettings())
        await client.close()

        assert summary.outline_title == "東京 ホテル"
        assert summary.h2 == ["Deep dive: 東京 ホテル"]

    @pytest.mark.asyncio
    async def test_generate_article(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return _chat_response('{"title": " Title ", "html": "<article>x</article>"}')

        client = _client(handler)
        article = await client.generate_article(_article_request())
        await client.close()

        assert article.title == "Title"
        assert article.html == "<article>x</article>"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ['{"title": "T"}', "[]", "not json"])
    async def test_generate_article_rejects_incomplete_payload(self, content):
        client = _client(lambda request: _chat_response(content))

        with pytest.raises(GrokError):
            await client.generate_article(_article_request())
        await client.close()

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = _client(lambda request: httpx.Response(429, text="slow down"))

        with pytest.raises(GrokError) as exc_info:
            await client.cluster_keywords([EmbeddingRequest(id="k1", text="a")])
        await client.close()

        assert exc_info.value.status_code == 429
        assert exc_info.value.response_body == "slow down"

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        client = _client(handler)
        with pytest.raises(GrokError, match="request failed"):
            await client.generate_article(_article_request())
        await client.close()
