"""APScheduler setup for the daily pipeline run.

Features:
- AsyncIOScheduler so pipeline coroutines run on the service event loop
- Daily cron trigger in the configured timezone
- Logging for scheduler lifecycle and job execution events
- Graceful shutdown

Jobs are kept in memory; the daily job is registered again on every start.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ADDED,
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    EVENT_JOB_SUBMITTED,
    EVENT_SCHEDULER_SHUTDOWN,
    EVENT_SCHEDULER_STARTED,
    JobEvent,
    JobExecutionEvent,
    JobSubmissionEvent,
    SchedulerEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from keyword_scheduler.core.config import Settings
from keyword_scheduler.core.logging import get_logger, scheduler_logger

logger = get_logger(__name__)

DAILY_PIPELINE_JOB_ID = "daily_pipeline"


class SchedulerState(Enum):
    """Scheduler state enumeration."""

    STOPPED = "stopped"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class JobInfo:
    """Information about a scheduled job."""

    id: str
    name: str | None
    trigger: str
    next_run_time: datetime | None


class SchedulerManager:
    """Owns the AsyncIOScheduler and the daily pipeline job.

    Args:
        settings: Process settings (cron time, timezone, misfire grace).
        daily_job: Coroutine function run by the daily trigger.
    """

    def __init__(
        self,
        settings: Settings,
        daily_job: Callable[[], Awaitable[Any]],
    ) -> None:
        self._settings = settings
        self._daily_job = daily_job
        self._scheduler: AsyncIOScheduler | None = None
        self._state = SchedulerState.STOPPED
        self._job_start_times: dict[str, float] = {}

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    def _setup_event_listeners(self, scheduler: AsyncIOScheduler) -> None:
        """Set up event listeners for scheduler events."""

        def on_scheduler_event(event: SchedulerEvent) -> None:
            if event.code == EVENT_SCHEDULER_STARTED:
                scheduler_logger.scheduler_start(len(scheduler.get_jobs()))
            elif event.code == EVENT_SCHEDULER_SHUTDOWN:
                scheduler_logger.scheduler_stop(graceful=True)

        def on_job_added(event: JobEvent) -> None:
            job = scheduler.get_job(event.job_id)
            next_run = job.next_run_time.isoformat() if job and job.next_run_time else None
            scheduler_logger.job_added(
                job_id=event.job_id,
                job_name=job.name if job else None,
                trigger=str(job.trigger) if job else "unknown",
                next_run=next_run,
            )

        def on_job_submitted(event: JobSubmissionEvent) -> None:
            self._job_start_times[event.job_id] = time.monotonic()

        def on_job_execution_event(event: JobExecutionEvent) -> None:
            job = scheduler.get_job(event.job_id)
            job_name = job.name if job else None
            start_time = self._job_start_times.pop(event.job_id, None)
            duration_ms = (time.monotonic() - start_time) * 1000 if start_time else 0

            if event.code == EVENT_JOB_EXECUTED:
                scheduler_logger.job_execution_success(
                    job_id=event.job_id, job_name=job_name, duration_ms=duration_ms
                )
            elif event.code == EVENT_JOB_ERROR:
                scheduler_logger.job_execution_error(
                    job_id=event.job_id,
                    job_name=job_name,
                    duration_ms=duration_ms,
                    error=str(event.exception),
                    error_type=type(event.exception).__name__,
                )
            elif event.code == EVENT_JOB_MISSED:
                scheduled_time = (
                    event.scheduled_run_time.isoformat()
                    if event.scheduled_run_time
                    else "unknown"
                )
                scheduler_logger.job_missed(
                    job_id=event.job_id,
                    job_name=job_name,
                    scheduled_time=scheduled_time,
                    misfire_grace_time=self._settings.scheduler_misfire_grace_time,
                )

        scheduler.add_listener(
            on_scheduler_event, EVENT_SCHEDULER_STARTED | EVENT_SCHEDULER_SHUTDOWN
        )
        scheduler.add_listener(on_job_added, EVENT_JOB_ADDED)
        scheduler.add_listener(on_job_submitted, EVENT_JOB_SUBMITTED)
        scheduler.add_listener(
            on_job_execution_event,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED,
        )

    def init_scheduler(self) -> bool:
        """Create the scheduler and register the daily job.

        Returns:
            False when the scheduler is disabled by configuration.
        """
        if not self._settings.scheduler_enabled:
            logger.info("Scheduler is disabled via configuration")
            return False

        if self._scheduler is not None:
            logger.warning("Scheduler already initialized")
            return True

        self._scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self._settings.scheduler_misfire_grace_time,
            },
            timezone=self._settings.scheduler_timezone,
        )
        self._setup_event_listeners(self._scheduler)
        self._scheduler.add_job(
            self._daily_job,
            trigger=CronTrigger(
                hour=self._settings.scheduler_cron_hour,
                minute=self._settings.scheduler_cron_minute,
                timezone=self._settings.scheduler_timezone,
            ),
            id=DAILY_PIPELINE_JOB_ID,
            name="Daily keyword pipeline",
            replace_existing=True,
        )
        logger.info("Scheduler initialized successfully")
        return True

    def start(self) -> bool:
        """Start the scheduler. Must be called with a running event loop.

        Returns:
            True if the scheduler is running afterwards.
        """
        if self._scheduler is None and not self.init_scheduler():
            return False
        if self._scheduler is None:
            return False
        if self._state == SchedulerState.RUNNING:
            logger.warning("Scheduler is already running")
            return True

        self._scheduler.start()
        self._state = SchedulerState.RUNNING
        return True

    def stop(self, wait: bool = True) -> None:
        """Stop the scheduler.

        Args:
            wait: If True, wait for running jobs to complete.
        """
        if self._scheduler is None or self._state != SchedulerState.RUNNING:
            return

        self._state = SchedulerState.SHUTTING_DOWN
        try:
            self._scheduler.shutdown(wait=wait)
        finally:
            self._state = SchedulerState.STOPPED
            self._scheduler = None

    def get_jobs(self) -> list[JobInfo]:
        if self._scheduler is None:
            return []
        return [
            JobInfo(
                id=job.id,
                name=job.name,
                trigger=str(job.trigger),
                next_run_time=getattr(job, "next_run_time", None),
            )
            for job in self._scheduler.get_jobs()
        ]
