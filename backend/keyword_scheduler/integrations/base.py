"""Collaborator contracts the pipeline depends on.

Stages only talk to these protocols. Concrete httpx clients live in the
sibling modules; tests substitute AsyncMock objects.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.keyword import Keyword
from keyword_scheduler.models.node import Node
from keyword_scheduler.schemas.pipeline import (
    Article,
    Embedding,
    EmbeddingRequest,
    GroupSummary,
    KeywordIdea,
)
from keyword_scheduler.schemas.settings import ProjectSettings


@dataclass
class ArticleRequest:
    """Input for article generation."""

    outline: dict[str, Any]
    research: str
    topic: str
    intent: str
    language: str


@dataclass
class PostPayload:
    title: str
    content: str


class KeywordIdeaProvider(Protocol):
    async def generate_ideas(
        self, node: Node, settings: ProjectSettings
    ) -> list[KeywordIdea]: ...


class EmbeddingProvider(Protocol):
    async def embed(self, items: list[EmbeddingRequest]) -> list[Embedding]: ...


class OutlineProvider(Protocol):
    async def summarize(
        self,
        group: KeywordGroup,
        keywords: list[Keyword],
        settings: ProjectSettings,
    ) -> GroupSummary: ...


class ArticleProvider(Protocol):
    async def generate_article(self, request: ArticleRequest) -> Article: ...


class KeywordClusterProvider(Protocol):
    async def cluster_keywords(self, items: list[EmbeddingRequest]) -> list[list[str]]: ...


class ResearchProvider(Protocol):
    async def search(self, topic: str, max_results: int = 5) -> list[dict[str, Any]]: ...


class BlogPublisher(Protocol):
    """Publishing adapter implemented once per platform."""

    async def post(self, payload: PostPayload) -> str: ...

    async def get_url(self, post_id: str) -> str: ...

    async def close(self) -> None: ...
