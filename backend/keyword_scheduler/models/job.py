"""PipelineJob and PipelineLock models.

PipelineJob is the ledger record of one pipeline invocation. It is created
with status `running` and zero counters, then finalized exactly once.

PipelineLock is the per-project mutual-exclusion marker. The primary key is
the project id, so at most one lock row can exist per project.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from keyword_scheduler.core.database import Base


class JobType(str, Enum):
    """How a run was requested."""

    MANUAL = "manual"
    DAILY = "daily"


class JobStatus(str, Enum):
    """Status of a pipeline job."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class PipelineJob(Base):
    """PipelineJob model.

    Attributes:
        id: UUID primary key
        project_id: Reference to the project the run belongs to
        type: manual or daily
        status: running, succeeded, failed or skipped
        payload: {projectId, themeIds}
        counters: Aggregate stage counters
        errors: [{type, message}] collected during the run
        started_at: When the job was created
        finished_at: When the job was finalized
    """

    __tablename__ = "pipeline_jobs"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.RUNNING.value,
        server_default=text("'running'"),
        index=True,
    )

    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict, server_default=text("'{}'::jsonb")
    )

    counters: Mapped[dict[str, int]] = mapped_column(
        JSONB, nullable=False, default=dict, server_default=text("'{}'::jsonb")
    )

    errors: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb")
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
    )

    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<PipelineJob(id={self.id!r}, type={self.type!r}, status={self.status!r})>"


class PipelineLock(Base):
    """PipelineLock model.

    Attributes:
        project_id: Locked project, also the primary key
        job_id: Job holding the lock, filled in once the job exists
        locked_at: When the lock was taken
    """

    __tablename__ = "pipeline_locks"

    project_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("projects.id", ondelete="CASCADE"),
        primary_key=True,
    )

    job_id: Mapped[str | None] = mapped_column(UUID(as_uuid=False), nullable=True)

    locked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
    )

    def __repr__(self) -> str:
        return f"<PipelineLock(project_id={self.project_id!r}, job_id={self.job_id!r})>"
