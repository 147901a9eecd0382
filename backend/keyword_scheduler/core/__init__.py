"""Core utilities and configuration."""

from keyword_scheduler.core.config import Settings, get_settings
from keyword_scheduler.core.database import Base, DatabaseManager, transaction
from keyword_scheduler.core.logging import (
    db_logger,
    get_logger,
    pipeline_logger,
    scheduler_logger,
    setup_logging,
)
from keyword_scheduler.core.retry import RetryPolicy, call_with_retry

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "DatabaseManager",
    "transaction",
    # Logging
    "db_logger",
    "get_logger",
    "pipeline_logger",
    "scheduler_logger",
    "setup_logging",
    # Retry
    "RetryPolicy",
    "call_with_retry",
]
