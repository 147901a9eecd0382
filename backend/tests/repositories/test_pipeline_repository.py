"""Tests for PipelineRepository against SQLite."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from keyword_scheduler.repositories.pipeline import (
    GroupDraft,
    KeywordDraft,
    LinkDraft,
)
from keyword_scheduler.services.errors import (
    AlreadyLockedError,
    GroupNotFoundError,
    JobAlreadyFinalizedError,
    ProjectNotFoundError,
)
from keyword_scheduler.services.normalization import normalize_keyword
from keyword_scheduler.utils.time import utc_now
from tests.conftest import outline_json


def _draft(text: str, node_id: str = "node-1") -> KeywordDraft:
    normalized = normalize_keyword(text)
    return KeywordDraft(
        text=normalized.text,
        dedupe_hash=normalized.hash,
        metrics={"avg_monthly": 100},
        source_node_id=node_id,
    )


class TestProjects:
    @pytest.mark.asyncio
    async def test_load_project_context(self, repository, seed):
        project = await seed.project(settings={"pipeline": {"stale_days": 3}})
        first = await seed.theme(project, name="first")
        second = await seed.theme(project, name="second", auto_update=False)

        context = await repository.load_project_context(project.id)

        assert context.project.id == project.id
        assert context.settings.pipeline.stale_days == 3
        assert [theme.id for theme in context.themes] == [first.id, second.id]
        assert context.find_theme(second.id).name == "second"
        assert context.find_theme("missing") is None

    @pytest.mark.asyncio
    async def test_missing_project(self, repository):
        with pytest.raises(ProjectNotFoundError):
            await repository.load_project_context("missing")

    @pytest.mark.asyncio
    async def test_get_auto_themes(self, repository, seed):
        project = await seed.project()
        auto_a = await seed.theme(project, name="a")
        await seed.theme(project, name="manual", auto_update=False)
        auto_b = await seed.theme(project, name="b")

        themes = await repository.get_auto_themes(project.id)
        assert [theme.id for theme in themes] == [auto_a.id, auto_b.id]

        filtered = await repository.get_auto_themes(project.id, [auto_b.id])
        assert [theme.id for theme in filtered] == [auto_b.id]

    @pytest.mark.asyncio
    async def test_list_active_project_ids(self, repository, seed):
        active = await seed.project(name="active")
        await seed.project(name="halted", halt=True)

        assert await repository.list_active_project_ids() == [active.id]


class TestNodes:
    @pytest.mark.asyncio
    async def test_eligible_nodes(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        now = utc_now()
        older = await seed.node(theme, "older", updated_at=now - timedelta(days=3))
        newer = await seed.node(
            theme, "pending", status="ideas-pending", updated_at=now - timedelta(days=1)
        )
        stale = await seed.node(
            theme,
            "stale",
            status="ideas-pending",
            last_ideas_at=now - timedelta(days=30),
            updated_at=now - timedelta(days=2),
        )
        await seed.node(theme, "fresh", last_ideas_at=now - timedelta(days=1))
        await seed.node(theme, "done", status="ideas-done")

        nodes = await repository.get_eligible_nodes(project.id, theme.id, 14, 10)
        assert [node.id for node in nodes] == [older.id, stale.id, newer.id]

        limited = await repository.get_eligible_nodes(project.id, theme.id, 14, 1)
        assert [node.id for node in limited] == [older.id]

    @pytest.mark.asyncio
    async def test_update_node_ideas_at(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        node = await seed.node(theme, "node", intent="trans")

        await repository.update_node_ideas_at(project.id, theme.id, node.id)

        assert await repository.get_eligible_nodes(project.id, theme.id, 14, 10) == []
        assert await repository.load_node_intent(node.id) == "trans"
        assert await repository.load_node_intent(None) is None


class TestKeywords:
    @pytest.mark.asyncio
    async def test_save_and_fetch_hashes(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        drafts = [_draft("東京 ホテル"), _draft("大阪 ホテル"), _draft("京都 旅館")]

        saved = await repository.save_keywords(project.id, theme.id, drafts)

        assert len(saved) == 3
        assert all(kw.status == "new" and kw.score == 0.0 for kw in saved)
        assert saved[0].versions[0]["metrics"] == {"avg_monthly": 100}
        hashes = await repository.fetch_keyword_hashes(project.id, theme.id)
        assert hashes == {draft.dedupe_hash for draft in drafts}

        clustering = await repository.load_keywords_for_clustering(project.id, theme.id)
        assert [kw.text for kw in clustering] == ["東京 ホテル", "大阪 ホテル", "京都 旅館"]

    @pytest.mark.asyncio
    async def test_duplicate_hash_rejected(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        await repository.save_keywords(project.id, theme.id, [_draft("東京 ホテル")])

        with pytest.raises(IntegrityError):
            await repository.save_keywords(project.id, theme.id, [_draft("東京 の ホテル")])

    @pytest.mark.asyncio
    async def test_save_nothing(self, repository):
        assert await repository.save_keywords("p", "t", []) == []

    @pytest.mark.asyncio
    async def test_clustering_skips_grouped(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        await seed.keyword(theme, "grouped", status="grouped")
        scored = await seed.keyword(theme, "scored", status="scored")

        keywords = await repository.load_keywords_for_clustering(project.id, theme.id)
        assert [kw.id for kw in keywords] == [scored.id]


class TestGroups:
    @pytest.mark.asyncio
    async def test_upsert_creates_then_merges(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        draft = GroupDraft(
            title="東京 ホテル",
            keyword_ids=["k1"],
            intent="info",
            priority_score=0.0,
            cluster_stats={"size": 1, "topKw": "東京 ホテル"},
        )
        created = await repository.upsert_group(project.id, theme.id, draft)
        await repository.save_group_summary(project.id, theme.id, created.id, outline_json())

        merged_draft = GroupDraft(
            title="東京 ホテル 安い",
            keyword_ids=["k1", "k2"],
            intent="info",
            priority_score=0.0,
            cluster_stats={"size": 2, "topKw": "東京 ホテル 安い"},
        )
        merged = await repository.upsert_group(project.id, theme.id, merged_draft, created.id)

        assert merged.id == created.id
        groups = await repository.load_groups_for_linking(project.id, theme.id)
        assert len(groups) == 1
        assert groups[0].keyword_ids == ["k1", "k2"]
        assert groups[0].summary == outline_json()

    @pytest.mark.asyncio
    async def test_groups_needing_outline(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        low = await seed.group(theme, "low", priority_score=1)
        high = await seed.group(theme, "high", priority_score=5)
        await seed.group(theme, "outlined", priority_score=9, summary=outline_json())
        await seed.group(
            theme, "disabled", priority_score=8, summary_disabled_at=utc_now()
        )

        groups = await repository.load_groups_needing_outline(project.id, theme.id, 10)
        assert [group.id for group in groups] == [high.id, low.id]

    @pytest.mark.asyncio
    async def test_groups_needing_post(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        ready = await seed.group(theme, "ready", priority_score=3, summary=outline_json())
        await seed.group(theme, "bare", priority_score=9)
        await seed.group(
            theme, "posted", priority_score=8, summary=outline_json(), post_url="https://x"
        )

        groups = await repository.load_groups_needing_post(project.id, theme.id, 5)
        assert [group.id for group in groups] == [ready.id]

    @pytest.mark.asyncio
    async def test_groups_by_ids_keeps_request_order(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        a = await seed.group(theme, "a")
        b = await seed.group(theme, "b")

        groups = await repository.load_groups_by_ids(project.id, theme.id, [b.id, "nope", a.id])
        assert [group.id for group in groups] == [b.id, a.id]

    @pytest.mark.asyncio
    async def test_save_summary_on_missing_group(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        with pytest.raises(GroupNotFoundError):
            await repository.save_group_summary(project.id, theme.id, "gone", outline_json())
        with pytest.raises(GroupNotFoundError):
            await repository.save_post_url(project.id, theme.id, "gone", "https://x")

    @pytest.mark.asyncio
    async def test_clear_outlines(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        group = await seed.group(theme, "a", summary=outline_json())

        assert await repository.clear_outlines(project.id, theme.id, [group.id]) == 1

        [cleared] = await repository.load_groups_by_ids(project.id, theme.id, [group.id])
        assert cleared.summary == {"disabled": True}
        assert cleared.summary_disabled_at is not None
        assert not cleared.has_active_summary
        assert await repository.load_groups_needing_outline(project.id, theme.id, 5) == []

        await repository.save_group_summary(project.id, theme.id, group.id, outline_json("new"))
        [restored] = await repository.load_groups_by_ids(project.id, theme.id, [group.id])
        assert restored.has_active_summary

    @pytest.mark.asyncio
    async def test_delete_groups_removes_keywords_and_links(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)
        doomed = await seed.group(theme, "doomed")
        kept = await seed.group(theme, "kept")
        await seed.keyword(theme, "member", group_id=doomed.id, status="grouped")
        survivor = await seed.keyword(theme, "other", group_id=kept.id, status="grouped")
        await repository.upsert_links(
            project.id,
            theme.id,
            [
                LinkDraft(kept.id, doomed.id, "sibling", 0.5),
                LinkDraft(doomed.id, kept.id, "sibling", 0.5),
            ],
        )

        deleted = await repository.delete_groups(project.id, theme.id, [doomed.id])

        assert deleted == 1
        groups = await repository.load_groups_for_linking(project.id, theme.id)
        assert [group.id for group in groups] == [kept.id]
        remaining = await repository.load_keywords_for_group(project.id, theme.id, kept.id)
        assert [kw.id for kw in remaining] == [survivor.id]
        assert await repository.load_keywords_for_group(project.id, theme.id, doomed.id) == []
        assert await repository.load_links(project.id, theme.id) == []


class TestLinks:
    @pytest.mark.asyncio
    async def test_upsert_overwrites_pair(self, repository, seed):
        project = await seed.project()
        theme = await seed.theme(project)

        await repository.upsert_links(project.id, theme.id, [LinkDraft("a", "b", "sibling", 0.2)])
        await repository.upsert_links(project.id, theme.id, [LinkDraft("a", "b", "hub", 0.9)])

        [link] = await repository.load_links(project.id, theme.id)
        assert link.id == "a__b"
        assert link.reason == "hub"
        assert link.weight == 0.9


class TestLockAndJobs:
    @pytest.mark.asyncio
    async def test_lock_is_exclusive(self, repository, seed):
        project = await seed.project()
        await repository.acquire_lock(project.id)
        await repository.set_lock_job(project.id, "job-1")

        with pytest.raises(AlreadyLockedError) as exc_info:
            await repository.acquire_lock(project.id)
        assert exc_info.value.holder_job_id == "job-1"

        await repository.release_lock(project.id)
        assert await repository.get_lock(project.id) is None
        await repository.acquire_lock(project.id)

    @pytest.mark.asyncio
    async def test_job_finalized_once(self, repository, seed):
        project = await seed.project()
        job = await repository.create_job(project.id, {"manual": True}, "manual")
        assert job.status == "running"

        await repository.finalize_job(job.id, {"new_keywords": 2}, "succeeded", [])

        stored = await repository.get_job(job.id)
        assert stored.status == "succeeded"
        assert stored.counters == {"new_keywords": 2}
        assert stored.finished_at is not None
        with pytest.raises(JobAlreadyFinalizedError):
            await repository.finalize_job(job.id, {}, "failed", [])
