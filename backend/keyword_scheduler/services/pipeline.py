"""Pipeline orchestrator.

run_pipeline drives one full run for a project:

    load project -> (halted: skipped job) -> acquire lock -> create job
    -> stages per theme -> finalize job -> release lock

Failure policy:
- theme failure: recorded as "theme:<id>", remaining themes still run
- theme selection failure: recorded as "pipeline", run ends
- anything escaping the stage loop: recorded as "fatal", job finalized, re-raised
- AlreadyLockedError propagates before any job is created
- lock release failures are logged only
"""

from dataclasses import asdict
from typing import Any

from keyword_scheduler.core.logging import get_logger, pipeline_logger
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.job import JobStatus, JobType
from keyword_scheduler.models.project import Theme
from keyword_scheduler.repositories.pipeline import PipelineRepository
from keyword_scheduler.schemas.pipeline import RunOptions, StageError, StageFlags
from keyword_scheduler.schemas.settings import merge_settings
from keyword_scheduler.services.errors import AlreadyLockedError
from keyword_scheduler.services.jobs import JobHandle, JobLedger, status_for
from keyword_scheduler.services.locking import LockManager
from keyword_scheduler.services.stages import (
    PipelineContext,
    PipelineDependencies,
    stage_a_keyword_discovery,
    stage_b_clustering,
    stage_c_scoring,
    stage_d_outline,
    stage_e_internal_links,
    stage_f_posting,
)

logger = get_logger(__name__)


async def handle_theme(
    ctx: PipelineContext,
    theme: Theme,
    stages: StageFlags,
    errors: list[StageError],
) -> None:
    """Run the enabled stages for one theme, recording a failure instead of raising."""
    settings = merge_settings(ctx.settings, theme.settings)
    try:
        if stages.ideas:
            await stage_a_keyword_discovery(ctx, theme, settings)
        else:
            pipeline_logger.stage_skipped("A", theme.id)

        clustered: list[KeywordGroup] = []
        if stages.clustering:
            clustered = await stage_b_clustering(ctx, theme, settings)
        else:
            pipeline_logger.stage_skipped("B", theme.id)

        if stages.scoring and clustered:
            await stage_c_scoring(ctx, theme, settings, clustered)
        elif not stages.scoring:
            pipeline_logger.stage_skipped("C", theme.id)

        outlined: list[KeywordGroup] = []
        if stages.outline:
            outlined = await stage_d_outline(ctx, theme, settings)
        else:
            pipeline_logger.stage_skipped("D", theme.id)

        if stages.links:
            await stage_e_internal_links(ctx, theme, settings, outlined)
        else:
            pipeline_logger.stage_skipped("E", theme.id)

        if stages.blogging:
            await stage_f_posting(ctx, theme, settings)
        else:
            pipeline_logger.stage_skipped("F", theme.id)
    except Exception as e:
        pipeline_logger.theme_failed(theme.id, e)
        errors.append(StageError(type=f"theme:{theme.id}", error=e))


async def run_pipeline_stages(
    ctx: PipelineContext, options: RunOptions
) -> list[StageError]:
    """Run every selected auto-update theme in order.

    Returns:
        Errors collected from themes and from theme selection.
    """
    errors: list[StageError] = []
    try:
        themes = await ctx.repository.get_auto_themes(ctx.project_id, options.theme_ids)
        for theme in themes:
            await handle_theme(ctx, theme, options.stages, errors)
    except Exception as e:
        pipeline_logger.pipeline_failed(ctx.project_id, e)
        errors.append(StageError(type="pipeline", error=e))
    return errors


def _job_payload(options: RunOptions) -> dict[str, Any]:
    return {
        "project_id": options.project_id,
        "theme_ids": options.theme_ids,
        "manual": options.manual,
        "stages": asdict(options.stages),
        "model": options.model,
    }


async def run_pipeline(
    repository: PipelineRepository,
    deps: PipelineDependencies,
    options: RunOptions,
) -> JobHandle:
    """Run the full pipeline for one project.

    Args:
        repository: Persistence gateway.
        deps: External collaborators.
        options: Project, theme filter, trigger, stage flags and model.

    Returns:
        The finalized job.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        AlreadyLockedError: If another run holds the project lock.
    """
    project = await repository.load_project_context(options.project_id)
    ledger = JobLedger(repository)
    job_type = JobType.MANUAL.value if options.manual else JobType.DAILY.value

    if project.project.halt:
        pipeline_logger.project_halted(options.project_id)
        job = await ledger.create(options.project_id, _job_payload(options), job_type)
        await ledger.finalize(job, JobStatus.SKIPPED.value, [])
        return job

    locks = LockManager(repository)
    lock = await locks.acquire(options.project_id)
    try:
        job = await ledger.create(options.project_id, _job_payload(options), job_type)
        await lock.attach_job(job.id)
        ctx = PipelineContext(
            project_id=options.project_id,
            settings=project.settings,
            repository=repository,
            deps=deps,
            job_id=job.id,
            counters=job.counters,
            model=options.model,
        )

        errors: list[StageError] = []
        fatal: Exception | None = None
        try:
            errors.extend(await run_pipeline_stages(ctx, options))
        except Exception as e:
            fatal = e
            pipeline_logger.pipeline_failed(options.project_id, e)
            errors.append(StageError(type="fatal", error=e))

        status = status_for(errors)
        await ledger.finalize(job, status, errors)
        pipeline_logger.run_summary(
            options.project_id,
            job.id,
            status,
            job.counters.to_dict(),
            [error.to_summary() for error in errors],
        )
        if fatal is not None:
            raise fatal
        return job
    finally:
        await locks.release_quietly(lock)


async def run_daily_pipelines(
    repository: PipelineRepository, deps: PipelineDependencies
) -> list[JobHandle]:
    """Run the daily pipeline for every non-halted project in turn.

    A locked or failing project is logged and the loop moves on.
    """
    jobs: list[JobHandle] = []
    for project_id in await repository.list_active_project_ids():
        try:
            jobs.append(
                await run_pipeline(
                    repository, deps, RunOptions(project_id=project_id, manual=False)
                )
            )
        except AlreadyLockedError as e:
            logger.warning(
                "Project already running, daily run skipped",
                extra={"project_id": project_id, "holder_job_id": e.holder_job_id},
            )
        except Exception as e:
            pipeline_logger.pipeline_failed(project_id, e)
    return jobs
