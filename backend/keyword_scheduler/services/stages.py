"""Pipeline stage functions A-F.

Each stage works on one theme with that theme's effective settings, commits
its own writes through the repository and adds to the shared counters on
the PipelineContext. Stages are used by the full run (services.pipeline)
and by the single-stage runners (services.inline).

- A keyword discovery: node -> keyword ideas -> normalized, deduplicated keywords
- B clustering: embeddings -> greedy clusters -> upserted groups
- C scoring: priority score per group
- D outline: summaries for the top groups without one
- E internal links: weighted link graph from outlined groups
- F posting: articles for outlined groups without a post
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial

from keyword_scheduler.core.logging import get_logger, pipeline_logger
from keyword_scheduler.core.retry import RetryPolicy, call_with_retry
from keyword_scheduler.integrations.base import (
    BlogPublisher,
    EmbeddingProvider,
    KeywordClusterProvider,
    KeywordIdeaProvider,
    OutlineProvider,
)
from keyword_scheduler.integrations.publishers import create_publisher
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.keyword import KeywordStatus
from keyword_scheduler.models.project import Theme
from keyword_scheduler.repositories.pipeline import (
    GroupDraft,
    KeywordDraft,
    KeywordGroupingUpdate,
    LinkDraft,
    PipelineRepository,
)
from keyword_scheduler.schemas.pipeline import (
    DEFAULT_MODEL,
    EmbeddingRequest,
    PipelineCounters,
)
from keyword_scheduler.schemas.settings import (
    HatenaTarget,
    ProjectSettings,
    WordpressTarget,
)
from keyword_scheduler.services.blogger import Blogger
from keyword_scheduler.services.clustering import (
    cluster_keywords,
    clusters_from_ids,
    coalesce_intent,
    select_representative,
)
from keyword_scheduler.services.errors import GroupNotFoundError, ModelNotConfiguredError
from keyword_scheduler.services.linking import build_link_candidates, limit_links
from keyword_scheduler.services.normalization import normalize_keyword
from keyword_scheduler.services.scoring import (
    ScoringInput,
    compute_priority_score,
    novelty_for_size,
)

logger = get_logger(__name__)


@dataclass
class ModelBackend:
    """Providers of one alternate language model.

    Attributes:
        outlines: Outline provider (Stage D).
        blogger: Article writer using the model (Stage F).
        clusters: Optional keyword cluster provider replacing embeddings (Stage B).
    """

    outlines: OutlineProvider
    blogger: Blogger
    clusters: KeywordClusterProvider | None = None


@dataclass
class PipelineDependencies:
    """External collaborators used by the stages.

    Attributes:
        ideas: Keyword idea provider (Stage A).
        embeddings: Embedding provider (Stage B).
        outlines: Outline provider (Stage D).
        blogger: Article writer and publisher driver (Stage F).
        publisher_factory: Builds the publisher for a blog target.
        retry_policy: Policy for every external call.
        models: Alternate language models by name. The default model uses
            embeddings, outlines and blogger above.
    """

    ideas: KeywordIdeaProvider
    embeddings: EmbeddingProvider
    outlines: OutlineProvider
    blogger: Blogger
    publisher_factory: Callable[[WordpressTarget | HatenaTarget], BlogPublisher] = (
        create_publisher
    )
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    models: dict[str, ModelBackend] = field(default_factory=dict)

    def backend(self, model: str) -> ModelBackend | None:
        """The alternate backend for a model name, None for the default model.

        Raises:
            ModelNotConfiguredError: If the model has no configured backend.
        """
        if not model or model == DEFAULT_MODEL:
            return None
        backend = self.models.get(model)
        if backend is None:
            raise ModelNotConfiguredError(model)
        return backend

    def outline_provider(self, model: str) -> OutlineProvider:
        backend = self.backend(model)
        return backend.outlines if backend else self.outlines

    def blogger_for(self, model: str) -> Blogger:
        backend = self.backend(model)
        return backend.blogger if backend else self.blogger

    def cluster_provider(self, model: str) -> KeywordClusterProvider | None:
        backend = self.backend(model)
        return backend.clusters if backend else None


@dataclass
class PipelineContext:
    """State shared by the stages of one run."""

    project_id: str
    settings: ProjectSettings
    repository: PipelineRepository
    deps: PipelineDependencies
    job_id: str
    counters: PipelineCounters = field(default_factory=PipelineCounters)
    model: str = DEFAULT_MODEL


async def stage_a_keyword_discovery(
    ctx: PipelineContext, theme: Theme, settings: ProjectSettings
) -> None:
    """Fetch keyword ideas for stale nodes and store the new ones.

    A node whose idea call fails is logged and contributes no keywords; it is
    still marked processed.
    """
    pipeline_logger.stage_start("A", theme.id)
    repo = ctx.repository
    nodes = await repo.get_eligible_nodes(
        ctx.project_id,
        theme.id,
        settings.pipeline.stale_days,
        settings.pipeline.limits.nodes_per_run,
    )
    ctx.counters.nodes_processed += len(nodes)
    known_hashes = await repo.fetch_keyword_hashes(ctx.project_id, theme.id)

    drafts: list[KeywordDraft] = []
    for node in nodes:
        try:
            ideas = await call_with_retry(
                partial(ctx.deps.ideas.generate_ideas, node, settings),
                ctx.deps.retry_policy,
                operation_name="keyword ideas",
            )
        except Exception as e:
            pipeline_logger.node_ideas_failed(theme.id, node.id, e)
            continue
        for idea in ideas:
            normalized = normalize_keyword(idea.keyword)
            if not normalized.text or normalized.hash in known_hashes:
                continue
            known_hashes.add(normalized.hash)
            drafts.append(
                KeywordDraft(
                    text=normalized.text,
                    dedupe_hash=normalized.hash,
                    metrics=idea.metrics.to_json(),
                    source_node_id=node.id,
                )
            )

    saved = await repo.save_keywords(ctx.project_id, theme.id, drafts)
    ctx.counters.new_keywords += len(saved)
    for node in nodes:
        await repo.update_node_ideas_at(ctx.project_id, theme.id, node.id)

    pipeline_logger.stage_end("A", theme.id, nodes=len(nodes), new_keywords=len(saved))


async def stage_b_clustering(
    ctx: PipelineContext, theme: Theme, settings: ProjectSettings
) -> list[KeywordGroup]:
    """Cluster unassigned keywords into groups.

    The default model clusters by embedding similarity; an alternate model
    with a cluster provider groups the keywords itself. Keywords it leaves
    out stay unassigned until the next run.

    Returns:
        The created or merged groups, in cluster order.
    """
    pipeline_logger.stage_start("B", theme.id)
    repo = ctx.repository
    keywords = await repo.load_keywords_for_clustering(ctx.project_id, theme.id)
    if not keywords:
        pipeline_logger.stage_end("B", theme.id, clusters=0)
        return []

    items = [EmbeddingRequest(id=kw.id, text=kw.text) for kw in keywords]
    clusterer = ctx.deps.cluster_provider(ctx.model)
    if clusterer is not None:
        cluster_ids = await call_with_retry(
            partial(clusterer.cluster_keywords, items),
            ctx.deps.retry_policy,
            operation_name="keyword clusters",
        )
        clusters = clusters_from_ids(keywords, cluster_ids)
    else:
        embeddings = await call_with_retry(
            partial(ctx.deps.embeddings.embed, items),
            ctx.deps.retry_policy,
            operation_name="embeddings",
        )
        vectors = {embedding.id: embedding.vector for embedding in embeddings}
        clusters = cluster_keywords(keywords, vectors)

    groups: list[KeywordGroup] = []
    updates: list[KeywordGroupingUpdate] = []
    for cluster in clusters:
        representative = select_representative(cluster)
        draft = GroupDraft(
            title=representative.text,
            keyword_ids=[kw.id for kw in cluster],
            intent=coalesce_intent(cluster),
            priority_score=0.0,
            cluster_stats={"size": len(cluster), "topKw": representative.text},
        )
        existing_group_id = next((kw.group_id for kw in cluster if kw.group_id), None)
        group = await repo.upsert_group(ctx.project_id, theme.id, draft, existing_group_id)
        if existing_group_id:
            ctx.counters.groups_updated += 1
        else:
            ctx.counters.groups_created += 1
        groups.append(group)
        updates.extend(
            KeywordGroupingUpdate(
                keyword_id=kw.id,
                group_id=group.id,
                status=KeywordStatus.GROUPED.value,
                score=kw.score or 0.0,
                metrics=kw.metrics,
                versions=kw.versions,
            )
            for kw in cluster
        )

    await repo.update_keywords_after_grouping(ctx.project_id, theme.id, updates)
    pipeline_logger.stage_end("B", theme.id, clusters=len(clusters))
    return groups


async def stage_c_scoring(
    ctx: PipelineContext,
    theme: Theme,
    settings: ProjectSettings,
    groups: list[KeywordGroup],
) -> list[KeywordGroup]:
    """Score each group and write the score back.

    The node intent is taken from the node that produced the representative
    keyword, falling back to the group intent.
    """
    pipeline_logger.stage_start("C", theme.id)
    repo = ctx.repository
    for group in groups:
        keywords = await repo.load_keywords_for_group(ctx.project_id, theme.id, group.id)
        volumes = [(kw.metrics or {}).get("avg_monthly") or 0 for kw in keywords]
        competition = next(
            (
                kw.metrics["competition"]
                for kw in keywords
                if (kw.metrics or {}).get("competition") is not None
            ),
            None,
        )
        node_intent = None
        if keywords:
            representative = select_representative(keywords)
            node_intent = await repo.load_node_intent(representative.source_node_id)

        score = compute_priority_score(
            ScoringInput(
                avg_monthly_volumes=volumes,
                competition=competition,
                group_intent=group.intent,
                node_intent=node_intent or group.intent,
                novelty=novelty_for_size(len(keywords)),
                weights=settings.weights,
            )
        )
        await repo.update_group_score(ctx.project_id, theme.id, group.id, score)
        group.priority_score = score

    pipeline_logger.stage_end("C", theme.id, groups=len(groups))
    return groups


async def stage_d_outline(
    ctx: PipelineContext,
    theme: Theme,
    settings: ProjectSettings,
    explicit_groups: list[KeywordGroup] | None = None,
) -> list[KeywordGroup]:
    """Draft outlines for explicit groups or the top groups without one.

    Returns:
        Groups whose outline was saved.
    """
    pipeline_logger.stage_start("D", theme.id)
    repo = ctx.repository
    limit = settings.pipeline.limits.groups_outline_per_run
    if explicit_groups:
        selected = explicit_groups[:limit]
    else:
        candidates = await repo.load_groups_needing_outline(ctx.project_id, theme.id, limit)
        selected = candidates[:limit]

    outlined: list[KeywordGroup] = []
    if not selected:
        pipeline_logger.stage_end("D", theme.id, outlined=0)
        return outlined

    outlines = ctx.deps.outline_provider(ctx.model)
    for group in selected:
        keywords = await repo.load_keywords_for_group(ctx.project_id, theme.id, group.id)
        summary = await call_with_retry(
            partial(outlines.summarize, group, keywords, settings),
            ctx.deps.retry_policy,
            operation_name="outline",
        )
        summary_json = summary.to_json()
        try:
            await repo.save_group_summary(ctx.project_id, theme.id, group.id, summary_json)
        except GroupNotFoundError:
            pipeline_logger.group_missing(theme.id, group.id)
            continue
        group.summary = summary_json
        group.summary_disabled_at = None
        ctx.counters.outlines_created += 1
        outlined.append(group)

    pipeline_logger.stage_end("D", theme.id, outlined=len(outlined))
    return outlined


async def stage_e_internal_links(
    ctx: PipelineContext,
    theme: Theme,
    settings: ProjectSettings,
    sources: list[KeywordGroup],
) -> int:
    """Build and store links from the given source groups.

    Returns:
        Number of links written.
    """
    pipeline_logger.stage_start("E", theme.id)
    if not sources:
        pipeline_logger.stage_end("E", theme.id, links=0)
        return 0

    repo = ctx.repository
    universe = await repo.load_groups_for_linking(ctx.project_id, theme.id)
    max_per_group = settings.links.max_per_group
    kept = limit_links(build_link_candidates(universe, sources, max_per_group), max_per_group)
    written = await repo.upsert_links(
        ctx.project_id,
        theme.id,
        [
            LinkDraft(
                from_group_id=candidate.from_group_id,
                to_group_id=candidate.to_group_id,
                reason=candidate.reason,
                weight=candidate.weight,
            )
            for candidate in kept
        ],
    )
    ctx.counters.links_updated += written
    pipeline_logger.stage_end("E", theme.id, links=written)
    return written


async def stage_f_posting(
    ctx: PipelineContext,
    theme: Theme,
    settings: ProjectSettings,
    explicit_groups: list[KeywordGroup] | None = None,
) -> list[KeywordGroup]:
    """Publish articles for explicit groups or the top outlined groups without a post.

    A no-op when the settings have no blog target.

    Returns:
        Groups that were published.
    """
    if settings.blog is None:
        pipeline_logger.stage_skipped("F", theme.id, reason="no blog target")
        return []

    pipeline_logger.stage_start("F", theme.id)
    repo = ctx.repository
    limit = settings.pipeline.limits.groups_blog_per_run
    if explicit_groups:
        selected = explicit_groups[:limit]
    else:
        candidates = await repo.load_groups_needing_post(ctx.project_id, theme.id, limit)
        selected = candidates[:limit]

    if not selected:
        pipeline_logger.stage_end("F", theme.id, posted=0)
        return []

    posted: list[KeywordGroup] = []
    blogger = ctx.deps.blogger_for(ctx.model)
    publisher = ctx.deps.publisher_factory(settings.blog)
    try:
        for group in selected:
            post = await blogger.create_post(
                group, publisher, language=settings.blog_language
            )
            await repo.save_post_url(ctx.project_id, theme.id, group.id, post.url)
            group.post_url = post.url
            ctx.counters.posts_created += 1
            posted.append(group)
    finally:
        await publisher.close()

    pipeline_logger.stage_end("F", theme.id, posted=len(posted))
    return posted
