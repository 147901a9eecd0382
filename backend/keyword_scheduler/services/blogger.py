"""Article posting for a single outlined group.

research -> article -> publish -> url. Every external call goes through
call_with_retry; an article without a title or html raises instead of
being published.
"""

import json
from dataclasses import dataclass
from functools import partial
from typing import Any

from keyword_scheduler.core.logging import get_logger
from keyword_scheduler.core.retry import RetryPolicy, call_with_retry
from keyword_scheduler.integrations.base import (
    ArticleProvider,
    ArticleRequest,
    BlogPublisher,
    PostPayload,
    ResearchProvider,
)
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.services.errors import ArticleGenerationError

logger = get_logger(__name__)

RESEARCH_MAX_RESULTS = 5


@dataclass
class PublishedPost:
    post_id: str
    url: str


def outline_for(group: KeywordGroup) -> dict[str, Any]:
    """The group's active outline, or a bare outline built from its title."""
    if group.has_active_summary:
        return dict(group.summary or {})
    return {"outlineTitle": group.title, "h2": [], "h3": {}, "faq": []}


class Blogger:
    """Writes and publishes one article per group.

    Args:
        articles: Article generator.
        research: Web research provider.
        retry_policy: Retry policy for every external call.
    """

    def __init__(
        self,
        articles: ArticleProvider,
        research: ResearchProvider,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.articles = articles
        self.research = research
        self.retry_policy = retry_policy or RetryPolicy()

    async def create_post(
        self,
        group: KeywordGroup,
        publisher: BlogPublisher,
        language: str = "ja",
    ) -> PublishedPost:
        """Generate an article for a group and publish it.

        Raises:
            ArticleGenerationError: If the generated title or html is empty.
        """
        outline = outline_for(group)
        topic = outline.get("outlineTitle") or group.title
        results = await call_with_retry(
            partial(self.research.search, topic, RESEARCH_MAX_RESULTS),
            self.retry_policy,
            operation_name="research search",
        )

        request = ArticleRequest(
            outline=outline,
            research=json.dumps(results, ensure_ascii=False),
            topic=group.title,
            intent=group.intent,
            language=language,
        )
        article = await call_with_retry(
            partial(self.articles.generate_article, request),
            self.retry_policy,
            operation_name="article generation",
        )
        title = (article.title or "").strip()
        content = (article.html or "").strip()
        if not title:
            raise ArticleGenerationError(group.id, "title")
        if not content:
            raise ArticleGenerationError(group.id, "html")

        post_id = await call_with_retry(
            partial(publisher.post, PostPayload(title=title, content=content)),
            self.retry_policy,
            operation_name="blog post",
        )
        url = await call_with_retry(
            partial(publisher.get_url, post_id),
            self.retry_policy,
            operation_name="blog post url",
        )
        logger.info(
            "Article published",
            extra={"group_id": group.id, "post_id": post_id, "url": url},
        )
        return PublishedPost(post_id=post_id, url=url)
