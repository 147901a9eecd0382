"""External service clients.

Each client creates its httpx.AsyncClient lazily and must be closed with
close(). Stages depend only on the protocols in base.
"""

from keyword_scheduler.integrations.base import (
    ArticleProvider,
    ArticleRequest,
    BlogPublisher,
    EmbeddingProvider,
    KeywordIdeaProvider,
    OutlineProvider,
    PostPayload,
    ResearchProvider,
)
from keyword_scheduler.integrations.gemini import GeminiClient, GeminiError
from keyword_scheduler.integrations.hatena import HatenaPublisher
from keyword_scheduler.integrations.keyword_ideas import KeywordIdeaClient, KeywordIdeaError
from keyword_scheduler.integrations.publishers import create_publisher
from keyword_scheduler.integrations.tavily import TavilyClient, TavilyError
from keyword_scheduler.integrations.wordpress import PublishError, WordpressPublisher

__all__ = [
    "ArticleProvider",
    "ArticleRequest",
    "BlogPublisher",
    "EmbeddingProvider",
    "GeminiClient",
    "GeminiError",
    "HatenaPublisher",
    "KeywordIdeaClient",
    "KeywordIdeaError",
    "KeywordIdeaProvider",
    "OutlineProvider",
    "PostPayload",
    "PublishError",
    "ResearchProvider",
    "TavilyClient",
    "TavilyError",
    "WordpressPublisher",
    "create_publisher",
]
