"""Structured logging configuration.

All logs go to stdout. JSON output in production, plain text in development.

Domain loggers:
- DatabaseLogger: connection errors (masked DSN), slow queries, transaction
  failures, migrations
- PipelineLogger: stage lifecycle, per-node/per-group/per-theme failures,
  lock and job ledger events, retry attempts
- ApiLogger: outbound calls to keyword ideas, Gemini, Grok, Tavily and blogs
- SchedulerLogger: scheduler lifecycle and job execution
"""

import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from pythonjsonlogger import jsonlogger

from keyword_scheduler.core.config import Settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined]
    """Custom JSON formatter with additional fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def mask_connection_string(conn_str: str) -> str:
    """Mask the password in a user:password@host connection string."""
    if not conn_str:
        return ""
    pattern = r"(://[^:]+:)([^@]+)(@)"
    return re.sub(pattern, r"\1****\3", conn_str)


def setup_logging(settings: Settings) -> None:
    """Configure the root logger for the process."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    formatter: logging.Formatter
    if settings.log_format == "json":
        formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class DatabaseLogger:
    """Logger for database operations."""

    def __init__(self) -> None:
        self.logger = get_logger("database")

    def connection_error(self, error: Exception, connection_string: str) -> None:
        """Log database connection error with masked connection string."""
        self.logger.error(
            "Database connection failed",
            extra={
                "connection_string": mask_connection_string(connection_string),
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )

    def slow_query(
        self, query: str, duration_ms: float, table: str | None = None
    ) -> None:
        """Log slow query at WARNING level."""
        self.logger.warning(
            "Slow query detected",
            extra={
                "duration_ms": duration_ms,
                "query": query[:500],
                "table": table,
            },
        )

    def transaction_failure(
        self, error: Exception, table: str | None = None, context: str | None = None
    ) -> None:
        """Log transaction failure with rollback context."""
        self.logger.error(
            "Transaction failed, rolling back",
            extra={
                "error_type": type(error).__name__,
                "error_message": str(error),
                "table": table,
                "rollback_context": context,
            },
        )

    def migration_start(self, version: str, description: str) -> None:
        """Log migration start."""
        self.logger.info(
            "Starting database migration",
            extra={
                "migration_version": version,
                "description": description,
            },
        )

    def migration_end(self, version: str, success: bool) -> None:
        """Log migration completion."""
        level = logging.INFO if success else logging.ERROR
        self.logger.log(
            level,
            "Database migration completed",
            extra={
                "migration_version": version,
                "success": success,
            },
        )


db_logger = DatabaseLogger()


class PipelineLogger:
    """Logger for pipeline runs.

    Stage events carry the theme id; run-level events carry the project and
    job ids so a single run can be followed across themes.
    """

    def __init__(self) -> None:
        self.logger = get_logger("pipeline")

    def stage_start(self, stage: str, theme_id: str) -> None:
        self.logger.info(
            f"Stage {stage} started",
            extra={"stage": stage, "theme_id": theme_id},
        )

    def stage_end(self, stage: str, theme_id: str, **counts: int) -> None:
        self.logger.info(
            f"Stage {stage} finished",
            extra={"stage": stage, "theme_id": theme_id, **counts},
        )

    def stage_skipped(self, stage: str, theme_id: str, reason: str = "disabled") -> None:
        self.logger.info(
            f"Stage {stage} skipped",
            extra={"stage": stage, "theme_id": theme_id, "reason": reason},
        )

    def node_ideas_failed(self, theme_id: str, node_id: str, error: Exception) -> None:
        """Log a keyword idea failure for one node; the node is skipped."""
        self.logger.error(
            "Keyword idea generation failed, skipping node",
            extra={
                "theme_id": theme_id,
                "node_id": node_id,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
            exc_info=error,
        )

    def group_missing(self, theme_id: str, group_id: str) -> None:
        """Log a group that disappeared before its outline was saved."""
        self.logger.warning(
            "Group no longer exists, skipping outline",
            extra={"theme_id": theme_id, "group_id": group_id},
        )

    def theme_failed(self, theme_id: str, error: Exception) -> None:
        self.logger.error(
            "Theme failed",
            extra={
                "theme_id": theme_id,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
            exc_info=error,
        )

    def pipeline_failed(self, project_id: str, error: Exception) -> None:
        self.logger.error(
            "Pipeline failed",
            extra={
                "project_id": project_id,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
            exc_info=error,
        )

    def project_halted(self, project_id: str) -> None:
        self.logger.info(
            "Project is halted, run skipped",
            extra={"project_id": project_id},
        )

    def lock_acquired(self, project_id: str) -> None:
        self.logger.info("Pipeline lock acquired", extra={"project_id": project_id})

    def lock_released(self, project_id: str) -> None:
        self.logger.info("Pipeline lock released", extra={"project_id": project_id})

    def lock_release_failed(self, project_id: str, error: Exception) -> None:
        """Log a failed lock release. Never escalated."""
        self.logger.warning(
            "Pipeline lock release failed",
            extra={
                "project_id": project_id,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )

    def job_created(self, project_id: str, job_id: str, job_type: str) -> None:
        self.logger.info(
            "Pipeline job created",
            extra={"project_id": project_id, "job_id": job_id, "job_type": job_type},
        )

    def run_summary(
        self,
        project_id: str,
        job_id: str,
        status: str,
        counters: dict[str, int],
        errors: list[dict[str, Any]],
    ) -> None:
        """Emit the single summary line for a finished run."""
        self.logger.info(
            "Pipeline run finished",
            extra={
                "project_id": project_id,
                "job_id": job_id,
                "status": status,
                **counters,
                "errors": errors,
            },
        )

    def retry_attempt(
        self,
        operation: str,
        attempt: int,
        retries: int,
        delay_ms: float,
        error: Exception,
    ) -> None:
        self.logger.warning(
            f"{operation} attempt {attempt} failed, retrying in {delay_ms:.0f}ms",
            extra={
                "operation": operation,
                "attempt": attempt,
                "max_retries": retries,
                "delay_ms": delay_ms,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )

    def retry_exhausted(self, operation: str, attempts: int, error: Exception) -> None:
        self.logger.error(
            f"{operation} failed after {attempts} attempts",
            extra={
                "operation": operation,
                "attempts": attempts,
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )


pipeline_logger = PipelineLogger()


class ApiLogger:
    """Logger for outbound calls to one external API.

    Logs endpoint, timing and status for every call. 4xx failures are
    logged at WARNING, everything else at ERROR. Never logs API keys.
    """

    def __init__(self, service: str) -> None:
        self.service = service
        self.logger = get_logger(service)

    def api_call_start(self, endpoint: str, **context: Any) -> None:
        self.logger.debug(
            f"{self.service} API call: {endpoint}",
            extra={"endpoint": endpoint, **context},
        )

    def api_call_success(self, endpoint: str, duration_ms: float, **context: Any) -> None:
        self.logger.debug(
            f"{self.service} API call completed: {endpoint}",
            extra={
                "endpoint": endpoint,
                "duration_ms": round(duration_ms, 2),
                "success": True,
                **context,
            },
        )

    def api_call_error(
        self,
        endpoint: str,
        duration_ms: float,
        status_code: int | None,
        error: str,
        error_type: str,
    ) -> None:
        level = logging.WARNING if status_code and 400 <= status_code < 500 else logging.ERROR
        self.logger.log(
            level,
            f"{self.service} API call failed: {endpoint}",
            extra={
                "endpoint": endpoint,
                "duration_ms": round(duration_ms, 2),
                "status_code": status_code,
                "error": error[:500],
                "error_type": error_type,
                "success": False,
            },
        )

    def auth_failure(self, status_code: int) -> None:
        self.logger.warning(
            f"{self.service} API authentication failed ({status_code})",
            extra={"status_code": status_code},
        )

    def graceful_fallback(self, operation: str, reason: str) -> None:
        """Log a fallback result built locally instead of from the API."""
        self.logger.warning(
            f"{self.service} fallback used for {operation}",
            extra={"operation": operation, "reason": reason},
        )


keyword_ideas_logger = ApiLogger("keyword_ideas")
gemini_logger = ApiLogger("gemini")
grok_logger = ApiLogger("grok")
tavily_logger = ApiLogger("tavily")
publisher_logger = ApiLogger("publisher")


class SchedulerLogger:
    """Logger for APScheduler lifecycle and job execution."""

    def __init__(self) -> None:
        self.logger = get_logger("scheduler")

    def scheduler_start(self, job_count: int) -> None:
        self.logger.info("Scheduler started", extra={"job_count": job_count})

    def scheduler_stop(self, graceful: bool) -> None:
        self.logger.info("Scheduler stopped", extra={"graceful": graceful})

    def job_added(
        self,
        job_id: str,
        job_name: str | None,
        trigger: str,
        next_run: str | None = None,
    ) -> None:
        self.logger.info(
            "Job added to scheduler",
            extra={
                "job_id": job_id,
                "job_name": job_name,
                "trigger": trigger,
                "next_run": next_run,
            },
        )

    def job_execution_success(
        self, job_id: str, job_name: str | None, duration_ms: float
    ) -> None:
        self.logger.info(
            "Job executed successfully",
            extra={
                "job_id": job_id,
                "job_name": job_name,
                "duration_ms": round(duration_ms, 2),
            },
        )

    def job_execution_error(
        self,
        job_id: str,
        job_name: str | None,
        duration_ms: float,
        error: str,
        error_type: str,
    ) -> None:
        self.logger.error(
            "Job execution failed",
            extra={
                "job_id": job_id,
                "job_name": job_name,
                "duration_ms": round(duration_ms, 2),
                "error": error,
                "error_type": error_type,
            },
        )

    def job_missed(
        self,
        job_id: str,
        job_name: str | None,
        scheduled_time: str,
        misfire_grace_time: int,
    ) -> None:
        self.logger.warning(
            "Job execution missed",
            extra={
                "job_id": job_id,
                "job_name": job_name,
                "scheduled_time": scheduled_time,
                "misfire_grace_time": misfire_grace_time,
            },
        )


scheduler_logger = SchedulerLogger()
