"""Job ledger: one record per pipeline run, finalized exactly once."""

from dataclasses import dataclass, field
from typing import Any

from keyword_scheduler.core.logging import pipeline_logger
from keyword_scheduler.models.job import JobStatus
from keyword_scheduler.repositories.pipeline import PipelineRepository
from keyword_scheduler.schemas.pipeline import PipelineCounters, StageError
from keyword_scheduler.services.errors import JobAlreadyFinalizedError


@dataclass
class JobHandle:
    """Reference to a job being recorded."""

    id: str
    project_id: str
    type: str
    counters: PipelineCounters = field(default_factory=PipelineCounters)
    finalized: bool = False
    status: str = JobStatus.RUNNING.value


def status_for(errors: list[StageError]) -> str:
    """failed iff any error was collected."""
    return JobStatus.FAILED.value if errors else JobStatus.SUCCEEDED.value


class JobLedger:
    """Creates and finalizes pipeline job records."""

    def __init__(self, repository: PipelineRepository) -> None:
        self.repository = repository

    async def create(
        self, project_id: str, payload: dict[str, Any], job_type: str
    ) -> JobHandle:
        job = await self.repository.create_job(project_id, payload, job_type)
        pipeline_logger.job_created(project_id, job.id, job_type)
        return JobHandle(id=job.id, project_id=project_id, type=job_type)

    async def finalize(
        self,
        job: JobHandle,
        status: str,
        errors: list[StageError],
    ) -> None:
        """Write the final counters, status and per-type error summary.

        Raises:
            JobAlreadyFinalizedError: If the job was already finalized.
        """
        if job.finalized:
            raise JobAlreadyFinalizedError(job.id)
        await self.repository.finalize_job(
            job.id,
            job.counters.to_dict(),
            status,
            [error.to_summary() for error in errors],
        )
        job.finalized = True
        job.status = status
