"""Per-project mutual exclusion for pipeline runs."""

from dataclasses import dataclass

from keyword_scheduler.core.logging import pipeline_logger
from keyword_scheduler.repositories.pipeline import PipelineRepository


@dataclass
class LockHandle:
    """A held project lock. release() deletes the marker."""

    project_id: str
    repository: PipelineRepository
    released: bool = False

    async def attach_job(self, job_id: str) -> None:
        """Record the job holding the lock."""
        await self.repository.set_lock_job(self.project_id, job_id)

    async def release(self) -> None:
        if self.released:
            return
        await self.repository.release_lock(self.project_id)
        self.released = True
        pipeline_logger.lock_released(self.project_id)


class LockManager:
    """Acquires project locks through the repository."""

    def __init__(self, repository: PipelineRepository) -> None:
        self.repository = repository

    async def acquire(self, project_id: str) -> LockHandle:
        """Take the lock for a project.

        Raises:
            AlreadyLockedError: If another run holds the lock.
        """
        await self.repository.acquire_lock(project_id)
        pipeline_logger.lock_acquired(project_id)
        return LockHandle(project_id=project_id, repository=self.repository)

    async def release_quietly(self, handle: LockHandle) -> None:
        """Release a lock, logging failures instead of raising them."""
        try:
            await handle.release()
        except Exception as e:
            pipeline_logger.lock_release_failed(handle.project_id, e)
