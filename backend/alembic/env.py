"""Alembic environment configuration for async SQLAlchemy migrations.

Supports:
- Async migrations with asyncpg
- Auto-detection of model changes
- DATABASE_URL from environment
- Migration logging with version info
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from keyword_scheduler.core.config import get_settings
from keyword_scheduler.core.database import Base, to_async_url
from keyword_scheduler.core.logging import db_logger

# Import all models so Alembic can detect them
from keyword_scheduler.models import (  # noqa: F401
    GroupLink,
    Keyword,
    KeywordGroup,
    Node,
    PipelineJob,
    PipelineLock,
    Project,
    Theme,
)

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_database_url() -> str:
    """Get database URL from settings, converted for the async driver."""
    return to_async_url(str(get_settings().database_url))


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Calls to context.execute() emit the SQL to the script output.
    """
    context.configure(
        url=get_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations in 'online' mode with async engine."""
    head_rev = context.get_head_revision()
    version = str(head_rev) if head_rev else "unknown"
    db_logger.migration_start(
        version=version, description=f"Migrating to {head_rev or 'head'}"
    )

    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = get_database_url()
    settings = get_settings()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args={
            "timeout": settings.db_connect_timeout,
            "command_timeout": settings.db_command_timeout,
        },
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    except Exception:
        db_logger.migration_end(version=version, success=False)
        raise
    finally:
        await connectable.dispose()
    db_logger.migration_end(version=version, success=True)


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
