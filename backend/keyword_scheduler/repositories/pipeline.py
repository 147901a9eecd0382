"""PipelineRepository: every read and write the pipeline performs.

Each public method runs in its own committed transaction, so a stage's
writes are durable before the next stage starts. Returned ORM instances are
detached (the session factory uses expire_on_commit=False) and are safe to
read after the call returns.

ERROR LOGGING REQUIREMENTS:
- Log method entry/exit at DEBUG level with entity ids
- SQLAlchemyError rolls back and is logged through db_logger, then re-raised
- Slow operations are reported through db_logger.slow_query
"""

import time
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keyword_scheduler.core.database import transaction
from keyword_scheduler.core.logging import db_logger, get_logger
from keyword_scheduler.models.group import KeywordGroup
from keyword_scheduler.models.job import JobStatus, PipelineJob, PipelineLock
from keyword_scheduler.models.keyword import Keyword, KeywordStatus
from keyword_scheduler.models.link import GroupLink, link_id
from keyword_scheduler.models.node import Node, NodeStatus
from keyword_scheduler.models.project import Project, Theme
from keyword_scheduler.schemas.pipeline import PipelineCounters
from keyword_scheduler.schemas.settings import ProjectSettings, parse_project_settings
from keyword_scheduler.services.errors import (
    AlreadyLockedError,
    GroupNotFoundError,
    JobAlreadyFinalizedError,
    ProjectNotFoundError,
)
from keyword_scheduler.utils.time import days_ago, utc_now

logger = get_logger(__name__)

ELIGIBLE_NODE_STATUSES = (NodeStatus.READY.value, NodeStatus.IDEAS_PENDING.value)
CLUSTERING_STATUSES = (KeywordStatus.NEW.value, KeywordStatus.SCORED.value)


@dataclass
class ProjectContext:
    """Project document, parsed settings and every theme of the project."""

    project_id: str
    project: Project
    settings: ProjectSettings
    themes: list[Theme] = field(default_factory=list)

    def find_theme(self, theme_id: str) -> Theme | None:
        return next((theme for theme in self.themes if theme.id == theme_id), None)


@dataclass
class KeywordDraft:
    """A normalized keyword idea ready to be written."""

    text: str
    dedupe_hash: str
    metrics: dict[str, Any]
    source_node_id: str


@dataclass
class GroupDraft:
    """Group fields written by clustering."""

    title: str
    keyword_ids: list[str]
    intent: str
    priority_score: float
    cluster_stats: dict[str, Any]


@dataclass
class KeywordGroupingUpdate:
    """New grouping state for one keyword."""

    keyword_id: str
    group_id: str
    status: str
    score: float
    metrics: dict[str, Any]
    versions: list[dict[str, Any]]


@dataclass
class LinkDraft:
    from_group_id: str
    to_group_id: str
    reason: str
    weight: float


class PipelineRepository:
    """Persistence gateway for the keyword pipeline.

    Args:
        session_factory: Session factory from DatabaseManager.
        slow_threshold_ms: Operations slower than this are logged as slow.
    """

    SLOW_OPERATION_THRESHOLD_MS = 1000

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        slow_threshold_ms: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._slow_threshold_ms = (
            slow_threshold_ms
            if slow_threshold_ms is not None
            else self.SLOW_OPERATION_THRESHOLD_MS
        )
        logger.debug("PipelineRepository initialized")

    def _session(self, table: str) -> AbstractAsyncContextManager[AsyncSession]:
        return transaction(
            self._session_factory,
            table=table,
            slow_threshold_ms=self._slow_threshold_ms,
        )

    def _log_duration(
        self, operation: str, table: str, start_time: float, **context: Any
    ) -> None:
        duration_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            f"{operation} completed",
            extra={**context, "duration_ms": round(duration_ms, 2)},
        )
        if duration_ms > self._slow_threshold_ms:
            db_logger.slow_query(query=operation, duration_ms=duration_ms, table=table)

    # ------------------------------------------------------------------
    # Projects and themes
    # ------------------------------------------------------------------

    async def load_project_context(self, project_id: str) -> ProjectContext:
        """Load a project, its settings and all of its themes.

        Raises:
            ProjectNotFoundError: If the project does not exist.
        """
        start_time = time.monotonic()
        async with self._session("projects") as session:
            project = await session.get(Project, project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            result = await session.execute(
                select(Theme)
                .where(Theme.project_id == project_id)
                .order_by(Theme.created_at, Theme.id)
            )
            themes = list(result.scalars().all())

        self._log_duration(
            "load_project_context",
            "projects",
            start_time,
            project_id=project_id,
            themes=len(themes),
        )
        return ProjectContext(
            project_id=project_id,
            project=project,
            settings=parse_project_settings(project.settings),
            themes=themes,
        )

    async def get_auto_themes(
        self, project_id: str, theme_ids: list[str] | None = None
    ) -> list[Theme]:
        """Auto-update themes of a project, optionally restricted to theme_ids."""
        start_time = time.monotonic()
        async with self._session("themes") as session:
            stmt = (
                select(Theme)
                .where(Theme.project_id == project_id, Theme.auto_update.is_(True))
                .order_by(Theme.created_at, Theme.id)
            )
            if theme_ids:
                stmt = stmt.where(Theme.id.in_(theme_ids))
            result = await session.execute(stmt)
            themes = list(result.scalars().all())

        self._log_duration(
            "get_auto_themes", "themes", start_time, project_id=project_id, count=len(themes)
        )
        return themes

    async def list_active_project_ids(self) -> list[str]:
        """Ids of every project that is not halted."""
        async with self._session("projects") as session:
            result = await session.execute(
                select(Project.id).where(Project.halt.is_(False)).order_by(Project.created_at)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Nodes and keywords
    # ------------------------------------------------------------------

    async def get_eligible_nodes(
        self,
        project_id: str,
        theme_id: str,
        stale_days: int,
        limit: int,
        now: datetime | None = None,
    ) -> list[Node]:
        """Nodes due for keyword discovery, least recently updated first.

        A node is due when its status is ready or ideas-pending and it has
        never been queried or was last queried at least stale_days ago.
        """
        start_time = time.monotonic()
        cutoff = days_ago(stale_days, now)
        async with self._session("nodes") as session:
            result = await session.execute(
                select(Node)
                .where(
                    Node.project_id == project_id,
                    Node.theme_id == theme_id,
                    Node.status.in_(ELIGIBLE_NODE_STATUSES),
                    or_(Node.last_ideas_at.is_(None), Node.last_ideas_at <= cutoff),
                )
                .order_by(Node.updated_at.asc(), Node.id)
                .limit(limit)
            )
            nodes = list(result.scalars().all())

        self._log_duration(
            "get_eligible_nodes", "nodes", start_time, theme_id=theme_id, count=len(nodes)
        )
        return nodes

    async def load_node_intent(self, node_id: str | None) -> str | None:
        if not node_id:
            return None
        async with self._session("nodes") as session:
            result = await session.execute(select(Node.intent).where(Node.id == node_id))
            return result.scalar_one_or_none()

    async def update_node_ideas_at(
        self, project_id: str, theme_id: str, node_id: str, at: datetime | None = None
    ) -> None:
        """Mark a node as queried: last_ideas_at = at, status ideas-done."""
        async with self._session("nodes") as session:
            await session.execute(
                update(Node)
                .where(
                    Node.id == node_id,
                    Node.project_id == project_id,
                    Node.theme_id == theme_id,
                )
                .values(
                    last_ideas_at=at or utc_now(),
                    status=NodeStatus.IDEAS_DONE.value,
                    updated_at=utc_now(),
                )
            )
        logger.debug(
            "Node ideas timestamp updated",
            extra={"theme_id": theme_id, "node_id": node_id},
        )

    async def fetch_keyword_hashes(self, project_id: str, theme_id: str) -> set[str]:
        """Dedupe hashes of every keyword already stored for the theme."""
        start_time = time.monotonic()
        async with self._session("keywords") as session:
            result = await session.execute(
                select(Keyword.dedupe_hash).where(
                    Keyword.project_id == project_id, Keyword.theme_id == theme_id
                )
            )
            hashes = set(result.scalars().all())

        self._log_duration(
            "fetch_keyword_hashes", "keywords", start_time, theme_id=theme_id, count=len(hashes)
        )
        return hashes

    async def save_keywords(
        self, project_id: str, theme_id: str, drafts: list[KeywordDraft]
    ) -> list[Keyword]:
        """Insert new keywords in one batch.

        Keywords start with status new, score 0 and a single version entry.
        created_at is offset per draft so the batch keeps its input order.

        Raises:
            IntegrityError: If a dedupe hash already exists for the theme.
        """
        if not drafts:
            return []
        start_time = time.monotonic()
        now = utc_now()
        keywords = [
            Keyword(
                project_id=project_id,
                theme_id=theme_id,
                text=draft.text,
                dedupe_hash=draft.dedupe_hash,
                metrics=draft.metrics,
                score=0.0,
                status=KeywordStatus.NEW.value,
                versions=[{"metrics": draft.metrics, "score": 0, "at": now.isoformat()}],
                locale="ja",
                source_node_id=draft.source_node_id,
                created_at=now + timedelta(microseconds=index),
                updated_at=now,
            )
            for index, draft in enumerate(drafts)
        ]
        async with self._session("keywords") as session:
            session.add_all(keywords)
            await session.flush()

        self._log_duration(
            "save_keywords", "keywords", start_time, theme_id=theme_id, count=len(keywords)
        )
        return keywords

    async def load_keywords_for_clustering(
        self, project_id: str, theme_id: str
    ) -> list[Keyword]:
        """Keywords with status new or scored, in insertion order."""
        async with self._session("keywords") as session:
            result = await session.execute(
                select(Keyword)
                .where(
                    Keyword.project_id == project_id,
                    Keyword.theme_id == theme_id,
                    Keyword.status.in_(CLUSTERING_STATUSES),
                )
                .order_by(Keyword.created_at, Keyword.id)
            )
            return list(result.scalars().all())

    async def load_keywords_for_group(
        self, project_id: str, theme_id: str, group_id: str
    ) -> list[Keyword]:
        async with self._session("keywords") as session:
            result = await session.execute(
                select(Keyword)
                .where(
                    Keyword.project_id == project_id,
                    Keyword.theme_id == theme_id,
                    Keyword.group_id == group_id,
                )
                .order_by(Keyword.created_at, Keyword.id)
            )
            return list(result.scalars().all())

    async def update_keywords_after_grouping(
        self, project_id: str, theme_id: str, updates: list[KeywordGroupingUpdate]
    ) -> None:
        """Write group membership for every clustered keyword in one transaction."""
        if not updates:
            return
        start_time = time.monotonic()
        now = utc_now()
        async with self._session("keywords") as session:
            for item in updates:
                await session.execute(
                    update(Keyword)
                    .where(
                        Keyword.id == item.keyword_id,
                        Keyword.project_id == project_id,
                        Keyword.theme_id == theme_id,
                    )
                    .values(
                        group_id=item.group_id,
                        status=item.status,
                        score=item.score,
                        metrics=item.metrics,
                        versions=item.versions,
                        updated_at=now,
                    )
                )

        self._log_duration(
            "update_keywords_after_grouping",
            "keywords",
            start_time,
            theme_id=theme_id,
            count=len(updates),
        )

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def upsert_group(
        self,
        project_id: str,
        theme_id: str,
        draft: GroupDraft,
        group_id: str | None = None,
    ) -> KeywordGroup:
        """Create a group, or merge the clustering fields into an existing one.

        Merging keeps fields clustering does not own (summary, post_url).
        """
        async with self._session("keyword_groups") as session:
            group = await session.get(KeywordGroup, group_id) if group_id else None
            if group is None:
                group = KeywordGroup(project_id=project_id, theme_id=theme_id)
                if group_id:
                    group.id = group_id
                session.add(group)
            group.title = draft.title
            group.keyword_ids = list(draft.keyword_ids)
            group.intent = draft.intent
            group.priority_score = draft.priority_score
            group.cluster_stats = dict(draft.cluster_stats)
            group.updated_at = utc_now()
            await session.flush()

        logger.debug(
            "Group upserted",
            extra={"theme_id": theme_id, "group_id": group.id, "merged": group_id is not None},
        )
        return group

    async def update_group_score(
        self, project_id: str, theme_id: str, group_id: str, score: float
    ) -> None:
        async with self._session("keyword_groups") as session:
            await session.execute(
                update(KeywordGroup)
                .where(
                    KeywordGroup.id == group_id,
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                )
                .values(priority_score=score, updated_at=utc_now())
            )

    async def _top_groups(
        self, project_id: str, theme_id: str, limit: int
    ) -> list[KeywordGroup]:
        async with self._session("keyword_groups") as session:
            result = await session.execute(
                select(KeywordGroup)
                .where(
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                )
                .order_by(KeywordGroup.priority_score.desc(), KeywordGroup.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def load_groups_needing_outline(
        self, project_id: str, theme_id: str, limit: int
    ) -> list[KeywordGroup]:
        """Highest-priority groups without a summary or a disabled marker.

        Reads 2 x limit rows before filtering; callers truncate to limit.
        """
        groups = await self._top_groups(project_id, theme_id, limit * 2)
        return [
            group
            for group in groups
            if not group.summary and group.summary_disabled_at is None
        ]

    async def load_groups_needing_post(
        self, project_id: str, theme_id: str, limit: int
    ) -> list[KeywordGroup]:
        """Highest-priority groups with an active summary and no post URL."""
        groups = await self._top_groups(project_id, theme_id, limit * 2)
        return [group for group in groups if group.has_active_summary and not group.post_url]

    async def load_groups_for_linking(
        self, project_id: str, theme_id: str
    ) -> list[KeywordGroup]:
        """Every group of the theme."""
        async with self._session("keyword_groups") as session:
            result = await session.execute(
                select(KeywordGroup)
                .where(
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                )
                .order_by(KeywordGroup.created_at, KeywordGroup.id)
            )
            return list(result.scalars().all())

    async def load_groups_by_ids(
        self, project_id: str, theme_id: str, group_ids: list[str]
    ) -> list[KeywordGroup]:
        """Groups with the given ids, in the requested order. Unknown ids are skipped."""
        if not group_ids:
            return []
        async with self._session("keyword_groups") as session:
            result = await session.execute(
                select(KeywordGroup).where(
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                    KeywordGroup.id.in_(group_ids),
                )
            )
            by_id = {group.id: group for group in result.scalars().all()}
        return [by_id[group_id] for group_id in dict.fromkeys(group_ids) if group_id in by_id]

    async def save_group_summary(
        self, project_id: str, theme_id: str, group_id: str, summary: dict[str, Any]
    ) -> None:
        """Store an outline on a group and clear any disabled marker.

        Raises:
            GroupNotFoundError: If the group no longer exists.
        """
        async with self._session("keyword_groups") as session:
            result = await session.execute(
                update(KeywordGroup)
                .where(
                    KeywordGroup.id == group_id,
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                )
                .values(summary=summary, summary_disabled_at=None, updated_at=utc_now())
            )
            if result.rowcount == 0:
                raise GroupNotFoundError(group_id)
        logger.debug(
            "Group summary saved", extra={"theme_id": theme_id, "group_id": group_id}
        )

    async def save_post_url(
        self, project_id: str, theme_id: str, group_id: str, url: str
    ) -> None:
        """Store the published article URL on a group.

        Raises:
            GroupNotFoundError: If the group no longer exists.
        """
        async with self._session("keyword_groups") as session:
            result = await session.execute(
                update(KeywordGroup)
                .where(
                    KeywordGroup.id == group_id,
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                )
                .values(post_url=url, updated_at=utc_now())
            )
            if result.rowcount == 0:
                raise GroupNotFoundError(group_id)

    async def clear_outlines(
        self, project_id: str, theme_id: str, group_ids: list[str]
    ) -> int:
        """Soft-disable outlines so outline selection skips these groups.

        Returns:
            Number of groups updated.
        """
        if not group_ids:
            return 0
        now = utc_now()
        async with self._session("keyword_groups") as session:
            result = await session.execute(
                update(KeywordGroup)
                .where(
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                    KeywordGroup.id.in_(group_ids),
                )
                .values(summary={"disabled": True}, summary_disabled_at=now, updated_at=now)
            )
            cleared = result.rowcount

        logger.info(
            "Outlines cleared",
            extra={"project_id": project_id, "theme_id": theme_id, "count": cleared},
        )
        return cleared

    async def delete_groups(
        self, project_id: str, theme_id: str, group_ids: list[str]
    ) -> int:
        """Delete groups with their member keywords and every link touching them.

        Returns:
            Number of groups deleted.
        """
        if not group_ids:
            return 0
        async with self._session("keyword_groups") as session:
            await session.execute(
                delete(Keyword).where(
                    Keyword.project_id == project_id,
                    Keyword.theme_id == theme_id,
                    Keyword.group_id.in_(group_ids),
                )
            )
            await session.execute(
                delete(GroupLink).where(
                    GroupLink.project_id == project_id,
                    GroupLink.theme_id == theme_id,
                    or_(
                        GroupLink.from_group_id.in_(group_ids),
                        GroupLink.to_group_id.in_(group_ids),
                    ),
                )
            )
            result = await session.execute(
                delete(KeywordGroup).where(
                    KeywordGroup.project_id == project_id,
                    KeywordGroup.theme_id == theme_id,
                    KeywordGroup.id.in_(group_ids),
                )
            )
            deleted = result.rowcount

        logger.info(
            "Groups deleted",
            extra={"project_id": project_id, "theme_id": theme_id, "count": deleted},
        )
        return deleted

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    async def upsert_links(
        self, project_id: str, theme_id: str, links: list[LinkDraft]
    ) -> int:
        """Write links keyed by "{from}__{to}", overwriting existing pairs."""
        if not links:
            return 0
        now = utc_now()
        async with self._session("group_links") as session:
            for link in links:
                await session.merge(
                    GroupLink(
                        id=link_id(link.from_group_id, link.to_group_id),
                        project_id=project_id,
                        theme_id=theme_id,
                        from_group_id=link.from_group_id,
                        to_group_id=link.to_group_id,
                        reason=link.reason,
                        weight=link.weight,
                        updated_at=now,
                    )
                )
        logger.debug(
            "Links upserted", extra={"theme_id": theme_id, "count": len(links)}
        )
        return len(links)

    async def load_links(self, project_id: str, theme_id: str) -> list[GroupLink]:
        async with self._session("group_links") as session:
            result = await session.execute(
                select(GroupLink)
                .where(GroupLink.project_id == project_id, GroupLink.theme_id == theme_id)
                .order_by(GroupLink.id)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Lock and job ledger
    # ------------------------------------------------------------------

    async def acquire_lock(self, project_id: str) -> PipelineLock:
        """Create the project lock marker.

        The marker is checked first and then inserted. The primary key on
        project_id turns a concurrent insert into AlreadyLockedError.

        Raises:
            AlreadyLockedError: If the project is already locked.
        """
        try:
            async with self._session("pipeline_locks") as session:
                existing = await session.get(PipelineLock, project_id)
                if existing is not None:
                    raise AlreadyLockedError(project_id, existing.job_id)
                lock = PipelineLock(project_id=project_id, job_id=None, locked_at=utc_now())
                session.add(lock)
                await session.flush()
        except IntegrityError as e:
            logger.warning(
                "Concurrent lock insert rejected",
                extra={"project_id": project_id, "error_message": str(e)},
            )
            raise AlreadyLockedError(project_id, None) from e
        return lock

    async def set_lock_job(self, project_id: str, job_id: str) -> None:
        async with self._session("pipeline_locks") as session:
            await session.execute(
                update(PipelineLock)
                .where(PipelineLock.project_id == project_id)
                .values(job_id=job_id)
            )

    async def release_lock(self, project_id: str) -> None:
        async with self._session("pipeline_locks") as session:
            await session.execute(
                delete(PipelineLock).where(PipelineLock.project_id == project_id)
            )

    async def get_lock(self, project_id: str) -> PipelineLock | None:
        async with self._session("pipeline_locks") as session:
            return await session.get(PipelineLock, project_id)

    async def create_job(
        self, project_id: str, payload: dict[str, Any], job_type: str
    ) -> PipelineJob:
        """Create a running job with zeroed counters."""
        async with self._session("pipeline_jobs") as session:
            job = PipelineJob(
                project_id=project_id,
                type=job_type,
                status=JobStatus.RUNNING.value,
                payload=payload,
                counters=PipelineCounters().to_dict(),
                errors=[],
                started_at=utc_now(),
            )
            session.add(job)
            await session.flush()
        return job

    async def finalize_job(
        self,
        job_id: str,
        counters: dict[str, int],
        status: str,
        errors: list[dict[str, Any]],
    ) -> None:
        """Write final counters, status and errors on a running job.

        Raises:
            JobAlreadyFinalizedError: If the job is no longer running.
        """
        async with self._session("pipeline_jobs") as session:
            result = await session.execute(
                update(PipelineJob)
                .where(
                    PipelineJob.id == job_id,
                    PipelineJob.status == JobStatus.RUNNING.value,
                )
                .values(
                    counters=counters,
                    status=status,
                    errors=errors,
                    finished_at=utc_now(),
                )
            )
            if result.rowcount == 0:
                raise JobAlreadyFinalizedError(job_id)

    async def get_job(self, job_id: str) -> PipelineJob | None:
        async with self._session("pipeline_jobs") as session:
            return await session.get(PipelineJob, job_id)
