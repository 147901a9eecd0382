"""Service entry point.

Builds settings, logging, the database, the integration clients and the
daily scheduler, then runs until SIGTERM/SIGINT.

    python -m keyword_scheduler.main
"""

import asyncio
import signal
from dataclasses import dataclass
from typing import Any

from keyword_scheduler.core.config import Settings, get_settings
from keyword_scheduler.core.database import DatabaseManager
from keyword_scheduler.core.logging import get_logger, setup_logging
from keyword_scheduler.core.retry import RetryPolicy
from keyword_scheduler.core.scheduler import SchedulerManager
from keyword_scheduler.integrations.gemini import GeminiClient
from keyword_scheduler.integrations.grok import GROK_MODEL, GrokClient
from keyword_scheduler.integrations.keyword_ideas import KeywordIdeaClient
from keyword_scheduler.integrations.tavily import TavilyClient
from keyword_scheduler.repositories.pipeline import PipelineRepository
from keyword_scheduler.services.blogger import Blogger
from keyword_scheduler.services.pipeline import run_daily_pipelines
from keyword_scheduler.services.stages import ModelBackend, PipelineDependencies

logger = get_logger(__name__)


@dataclass
class Clients:
    """Integration clients owned by the process."""

    keyword_ideas: KeywordIdeaClient
    gemini: GeminiClient
    tavily: TavilyClient
    grok: GrokClient | None = None

    async def close(self) -> None:
        await self.keyword_ideas.close()
        await self.gemini.close()
        await self.tavily.close()
        if self.grok is not None:
            await self.grok.close()


def build_dependencies(settings: Settings) -> tuple[PipelineDependencies, Clients]:
    """Create the integration clients and the stage dependencies using them.

    Grok is registered as an alternate model only when its API key is set.
    """
    clients = Clients(
        keyword_ideas=KeywordIdeaClient.from_settings(settings),
        gemini=GeminiClient.from_settings(settings),
        tavily=TavilyClient.from_settings(settings),
        grok=GrokClient.from_settings(settings) if settings.grok_api_key else None,
    )
    retry_policy = RetryPolicy.from_settings(settings)
    models: dict[str, ModelBackend] = {}
    if clients.grok is not None:
        models[GROK_MODEL] = ModelBackend(
            outlines=clients.grok,
            blogger=Blogger(clients.grok, clients.tavily, retry_policy),
            clusters=clients.grok,
        )
    deps = PipelineDependencies(
        ideas=clients.keyword_ideas,
        embeddings=clients.gemini,
        outlines=clients.gemini,
        blogger=Blogger(clients.gemini, clients.tavily, retry_policy),
        retry_policy=retry_policy,
        models=models,
    )
    return deps, clients


async def serve(settings: Settings) -> None:
    """Run the scheduler until a shutdown signal arrives."""
    logger.info(
        "Starting keyword scheduler",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    db_manager = DatabaseManager(settings)
    try:
        db_manager.init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    if not await db_manager.check_connection():
        logger.warning("Database connection check failed at startup")

    repository = PipelineRepository(
        db_manager.session_factory,
        slow_threshold_ms=settings.db_slow_query_threshold_ms,
    )
    deps, clients = build_dependencies(settings)

    async def daily_job() -> None:
        await run_daily_pipelines(repository, deps)

    scheduler = SchedulerManager(settings, daily_job)
    if scheduler.start():
        logger.info("Scheduler started")
    else:
        logger.info("Scheduler not started (disabled)")

    shutdown_event = asyncio.Event()

    def handle_signal(*args: Any) -> None:
        logger.info("Received shutdown signal, initiating graceful shutdown")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_signal)
        except (NotImplementedError, RuntimeError):
            # Signal handling not available on this platform or thread
            pass

    try:
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down")
        scheduler.stop(wait=True)
        await clients.close()
        await db_manager.close()
        logger.info("Shutdown complete")


def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
