"""Tests for running stages and runners against an alternate language model."""

import pytest
from sqlalchemy import select

from keyword_scheduler.models.job import PipelineJob
from keyword_scheduler.schemas.pipeline import RunOptions, StageFlags
from keyword_scheduler.schemas.settings import merge_settings
from keyword_scheduler.services.errors import ModelNotConfiguredError
from keyword_scheduler.services.inline import run_blog_generation, run_outline_generation
from keyword_scheduler.services.pipeline import run_pipeline
from keyword_scheduler.services.stages import (
    PipelineContext,
    stage_b_clustering,
    stage_d_outline,
    stage_f_posting,
)
from tests.conftest import WORDPRESS_SETTINGS, outline_json


async def _model_context(
    repository, collaborators, project_id: str, model: str
) -> PipelineContext:
    project = await repository.load_project_context(project_id)
    return PipelineContext(
        project_id=project_id,
        settings=project.settings,
        repository=repository,
        deps=collaborators.dependencies(),
        job_id="job-test",
        model=model,
    )


class TestDependencySelection:
    def test_default_model_uses_primary_providers(self, collaborators):
        deps = collaborators.dependencies()

        assert deps.backend("gemini") is None
        assert deps.backend("") is None
        assert deps.outline_provider("gemini") is collaborators.outlines
        assert deps.cluster_provider("gemini") is None

    def test_alternate_model(self, collaborators):
        deps = collaborators.dependencies()

        assert deps.outline_provider("grok") is collaborators.grok_outlines
        assert deps.cluster_provider("grok") is collaborators.grok_clusters
        assert deps.blogger_for("grok") is deps.models["grok"].blogger

    def test_unknown_model(self, collaborators):
        deps = collaborators.dependencies()

        with pytest.raises(ModelNotConfiguredError, match="not configured: claude") as exc_info:
            deps.outline_provider("claude")
        assert exc_info.value.model == "claude"


class TestStagesWithAlternateModel:
    @pytest.mark.asyncio
    async def test_clustering_uses_model_clusters(self, repository, seed, collaborators):
        project = await seed.project()
        theme = await seed.theme(project)
        hotel = await seed.keyword(theme, "東京 ホテル", avg_monthly=100)
        inn = await seed.keyword(theme, "東京 旅館", avg_monthly=300)
        osaka = await seed.keyword(theme, "大阪 ホテル", avg_monthly=50)
        left_out = await seed.keyword(theme, "京都 民泊", avg_monthly=10)
        collaborators.grok_clusters.clusters = [
            [hotel.id, inn.id, "unknown"],
            [osaka.id, hotel.id],
        ]
        ctx = await _model_context(repository, collaborators, project.id, "grok")
        settings = merge_settings(ctx.settings, theme.settings)

        groups = await stage_b_clustering(ctx, theme, settings)

        assert collaborators.embeddings.calls == 0
        assert len(collaborators.grok_clusters.calls) == 1
        assert [group.title for group in groups] == ["東京 旅館", "大阪 ホテル"]
        assert groups[1].cluster_stats == {"size": 1, "topKw": "大阪 ホテル"}
        assert ctx.counters.groups_created == 2
        [remaining] = await repository.load_keywords_for_clustering(project.id, theme.id)
        assert remaining.id == left_out.id

    @pytest.mark.asyncio
    async def test_outline_uses_model(self, repository, seed, collaborators):
        project = await seed.project()
        theme = await seed.theme(project)
        group = await seed.group(theme, "東京 ホテル")
        ctx = await _model_context(repository, collaborators, project.id, "grok")

        outlined = await stage_d_outline(ctx, theme, merge_settings(ctx.settings, theme.settings))

        assert [g.id for g in outlined] == [group.id]
        assert outlined[0].summary["outlineTitle"] == "東京 ホテル grok plan"
        assert collaborators.grok_outlines.calls == [group.id]
        assert collaborators.outlines.calls == []

    @pytest.mark.asyncio
    async def test_posting_uses_model(self, repository, seed, collaborators):
        project = await seed.project(settings=WORDPRESS_SETTINGS)
        theme = await seed.theme(project)
        await seed.group(theme, "ready", summary=outline_json())
        ctx = await _model_context(repository, collaborators, project.id, "grok")

        posted = await stage_f_posting(ctx, theme, merge_settings(ctx.settings, theme.settings))

        assert len(posted) == 1
        [publisher] = collaborators.publishers
        assert publisher.posts[0].title == "Grok article"
        collaborators.articles.generate_article.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_model_fails_stage(self, repository, seed, collaborators):
        project = await seed.project()
        theme = await seed.theme(project)
        await seed.group(theme, "東京 ホテル")
        ctx = await _model_context(repository, collaborators, project.id, "claude")

        with pytest.raises(ModelNotConfiguredError):
            await stage_d_outline(ctx, theme, merge_settings(ctx.settings, theme.settings))


class TestRunnersWithAlternateModel:
    @pytest.mark.asyncio
    async def test_inline_outline(self, repository, seed, collaborators):
        project = await seed.project()
        theme = await seed.theme(project)
        group = await seed.group(theme, "new")

        result = await run_outline_generation(
            repository, collaborators.dependencies(), project.id, theme.id, model="grok"
        )

        assert result.group_ids == [group.id]
        assert collaborators.grok_outlines.calls == [group.id]
        assert collaborators.outlines.calls == []

    @pytest.mark.asyncio
    async def test_inline_blog(self, repository, seed, collaborators):
        project = await seed.project(settings=WORDPRESS_SETTINGS)
        theme = await seed.theme(project)
        group = await seed.group(theme, "article", summary=outline_json())

        result = await run_blog_generation(
            repository, collaborators.dependencies(), project.id, theme.id, model="grok"
        )

        assert result.group_ids == [group.id]
        assert collaborators.publishers[0].posts[0].title == "Grok article"

    @pytest.mark.asyncio
    async def test_full_run_records_model(
        self, repository, seed, collaborators, async_session_factory
    ):
        project = await seed.project()
        theme = await seed.theme(project)
        await seed.group(theme, "東京 ホテル")

        job = await run_pipeline(
            repository,
            collaborators.dependencies(),
            RunOptions(project_id=project.id, stages=StageFlags.only("outline"), model="grok"),
        )

        assert job.status == "succeeded"
        assert collaborators.grok_outlines.calls != []
        async with async_session_factory() as session:
            stored = (
                await session.execute(
                    select(PipelineJob).where(PipelineJob.project_id == project.id)
                )
            ).scalar_one()
        assert stored.payload["model"] == "grok"

    @pytest.mark.asyncio
    async def test_full_run_with_unknown_model_fails_theme(
        self, repository, seed, collaborators, async_session_factory
    ):
        project = await seed.project()
        theme = await seed.theme(project)
        await seed.group(theme, "東京 ホテル")

        job = await run_pipeline(
            repository,
            collaborators.dependencies(),
            RunOptions(project_id=project.id, stages=StageFlags.only("outline"), model="claude"),
        )

        assert job.status == "failed"
        assert job.counters.outlines_created == 0
        assert await repository.get_lock(project.id) is None
        async with async_session_factory() as session:
            stored = (
                await session.execute(
                    select(PipelineJob).where(PipelineJob.project_id == project.id)
                )
            ).scalar_one()
        assert stored.errors == [
            {
                "type": f"theme:{theme.id}",
                "message": "Language model not configured: claude",
                "count": 1,
            }
        ]
