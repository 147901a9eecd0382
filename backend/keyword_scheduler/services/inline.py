"""Single-stage runners for on-demand operations.

Each runner builds a light PipelineContext for one theme (no lock, no job
record, an ephemeral "inline_<ms>" job id) and calls the same stage
functions as the full run. Without explicit ids, the outline and post
runners pick from every group of the theme, not only the top of the
priority order.
"""

import time
from collections.abc import Callable

from keyword_scheduler.core.logging import get_logger
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.project import Theme
from keyword_scheduler.repositories.pipeline import PipelineRepository
from keyword_scheduler.schemas.pipeline import DEFAULT_MODEL, InlineResult
from keyword_scheduler.schemas.settings import ProjectSettings, merge_settings
from keyword_scheduler.services.errors import ThemeNotFoundError
from keyword_scheduler.services.stages import (
    PipelineContext,
    PipelineDependencies,
    stage_a_keyword_discovery,
    stage_b_clustering,
    stage_d_outline,
    stage_e_internal_links,
    stage_f_posting,
)

logger = get_logger(__name__)

COMPLETED = "completed"


def inline_job_id() -> str:
    return f"inline_{int(time.time() * 1000)}"


def _clean_ids(group_ids: list[str] | None) -> list[str]:
    return [group_id.strip() for group_id in group_ids or [] if group_id and group_id.strip()]


def needs_outline(group: KeywordGroup) -> bool:
    return group.summary_disabled_at is None and not group.has_active_summary


def needs_post(group: KeywordGroup) -> bool:
    return group.has_active_summary and not group.post_url


def top_groups(
    groups: list[KeywordGroup],
    predicate: Callable[[KeywordGroup], bool],
    limit: int,
) -> list[KeywordGroup]:
    """Matching groups by priority score, highest first, truncated to limit."""
    matching = [group for group in groups if predicate(group)]
    matching.sort(key=lambda group: group.priority_score or 0.0, reverse=True)
    return matching[:limit]


async def create_inline_context(
    repository: PipelineRepository,
    deps: PipelineDependencies,
    project_id: str,
    theme_id: str,
    model: str = DEFAULT_MODEL,
) -> tuple[PipelineContext, Theme, ProjectSettings]:
    """Load the project and theme and build an inline context.

    Returns:
        The context, the theme and the theme's effective settings.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        ThemeNotFoundError: If the theme is not part of the project.
    """
    project = await repository.load_project_context(project_id)
    theme = project.find_theme(theme_id)
    if theme is None:
        raise ThemeNotFoundError(project_id, theme_id)

    ctx = PipelineContext(
        project_id=project_id,
        settings=project.settings,
        repository=repository,
        deps=deps,
        job_id=inline_job_id(),
        model=model,
    )
    return ctx, theme, merge_settings(project.settings, theme.settings)


async def run_outline_generation(
    repository: PipelineRepository,
    deps: PipelineDependencies,
    project_id: str,
    theme_id: str,
    group_ids: list[str] | None = None,
    model: str = DEFAULT_MODEL,
) -> InlineResult:
    """Draft outlines for the given groups, or for the top groups without one.

    Explicit ids that match no group produce an empty result rather than
    falling back to the top groups.
    """
    ctx, theme, settings = await create_inline_context(
        repository, deps, project_id, theme_id, model
    )
    explicit_ids = _clean_ids(group_ids)
    if explicit_ids:
        targets = await repository.load_groups_by_ids(project_id, theme_id, explicit_ids)
    else:
        targets = top_groups(
            await repository.load_groups_for_linking(project_id, theme_id),
            needs_outline,
            settings.pipeline.limits.groups_outline_per_run,
        )
    outlined = await stage_d_outline(ctx, theme, settings, targets) if targets else []

    logger.info(
        "Inline outline generation finished",
        extra={"project_id": project_id, "theme_id": theme_id, "outlined": len(outlined)},
    )
    return InlineResult(
        status=COMPLETED,
        job_id=ctx.job_id,
        counters=ctx.counters,
        group_ids=[group.id for group in outlined],
    )


async def run_link_generation(
    repository: PipelineRepository,
    deps: PipelineDependencies,
    project_id: str,
    theme_id: str,
    source_group_ids: list[str] | None = None,
) -> InlineResult:
    """Rebuild links from every group with an active outline.

    With source_group_ids, only those groups are used as sources.
    """
    ctx, theme, settings = await create_inline_context(repository, deps, project_id, theme_id)
    groups = await repository.load_groups_for_linking(project_id, theme_id)
    wanted = set(_clean_ids(source_group_ids)) if source_group_ids is not None else None
    sources = [
        group
        for group in groups
        if group.has_active_summary and (wanted is None or group.id in wanted)
    ]
    if not sources:
        return InlineResult(status=COMPLETED, job_id=ctx.job_id, counters=ctx.counters)

    await stage_e_internal_links(ctx, theme, settings, sources)
    return InlineResult(
        status=COMPLETED,
        job_id=ctx.job_id,
        counters=ctx.counters,
        group_ids=[group.id for group in sources],
    )


async def run_blog_generation(
    repository: PipelineRepository,
    deps: PipelineDependencies,
    project_id: str,
    theme_id: str,
    group_ids: list[str] | None = None,
    model: str = DEFAULT_MODEL,
) -> InlineResult:
    """Publish articles for the given groups, or for the top outlined groups without a post."""
    ctx, theme, settings = await create_inline_context(
        repository, deps, project_id, theme_id, model
    )
    explicit_ids = _clean_ids(group_ids)
    if explicit_ids:
        targets = await repository.load_groups_by_ids(project_id, theme_id, explicit_ids)
    else:
        targets = top_groups(
            await repository.load_groups_for_linking(project_id, theme_id),
            needs_post,
            settings.pipeline.limits.groups_blog_per_run,
        )
    posted = await stage_f_posting(ctx, theme, settings, targets) if targets else []

    return InlineResult(
        status=COMPLETED,
        job_id=ctx.job_id,
        counters=ctx.counters,
        group_ids=[group.id for group in posted],
    )


async def run_theme_refresh(
    repository: PipelineRepository,
    deps: PipelineDependencies,
    project_id: str,
    theme_id: str,
    model: str = DEFAULT_MODEL,
) -> InlineResult:
    """Run keyword discovery and clustering for one theme."""
    ctx, theme, settings = await create_inline_context(
        repository, deps, project_id, theme_id, model
    )
    await stage_a_keyword_discovery(ctx, theme, settings)
    groups = await stage_b_clustering(ctx, theme, settings)
    return InlineResult(
        status=COMPLETED,
        job_id=ctx.job_id,
        counters=ctx.counters,
        group_ids=[group.id for group in groups],
    )


async def _require_theme(
    repository: PipelineRepository, project_id: str, theme_id: str
) -> None:
    project = await repository.load_project_context(project_id)
    if project.find_theme(theme_id) is None:
        raise ThemeNotFoundError(project_id, theme_id)


async def clear_outlines(
    repository: PipelineRepository,
    project_id: str,
    theme_id: str,
    group_ids: list[str],
) -> int:
    """Soft-disable the outlines of the given groups.

    Returns:
        Number of groups updated.
    """
    await _require_theme(repository, project_id, theme_id)
    return await repository.clear_outlines(project_id, theme_id, _clean_ids(group_ids))


async def delete_groups(
    repository: PipelineRepository,
    project_id: str,
    theme_id: str,
    group_ids: list[str],
) -> int:
    """Delete groups together with their keywords and links.

    Returns:
        Number of groups deleted.
    """
    await _require_theme(repository, project_id, theme_id)
    return await repository.delete_groups(project_id, theme_id, _clean_ids(group_ids))
