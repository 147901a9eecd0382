"""Process configuration loaded from environment variables.

The Settings object is built once at process start and handed to the
database manager, repositories, integration clients and the scheduler by
parameter. It is frozen so nothing can mutate it after startup.
"""

from functools import lru_cache

from pydantic import Field, PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_name: str = Field(default="Keyword Scheduler")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Database
    database_url: PostgresDsn = Field(
        ...,
        description="PostgreSQL connection string",
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size")
    db_max_overflow: int = Field(default=10, description="Max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    db_slow_query_threshold_ms: int = Field(
        default=100, description="Threshold for slow query warnings (ms)"
    )
    db_connect_timeout: int = Field(
        default=60, description="Connection timeout in seconds"
    )
    db_command_timeout: int = Field(
        default=60, description="Command timeout in seconds"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format: json or text")

    # Keyword idea provider (ad keyword volume API)
    keyword_volume_api_url: str | None = Field(
        default=None,
        description="Endpoint returning keyword ideas with volume metrics",
    )
    keyword_volume_timeout: float = Field(
        default=60.0, description="Keyword volume API timeout in seconds"
    )

    # Gemini (embeddings, outlines, articles)
    gemini_api_key: str | None = Field(default=None, description="Gemini API key")
    gemini_embedding_model: str = Field(default="models/text-embedding-004")
    gemini_generative_model: str = Field(default="models/gemini-2.5-flash")
    gemini_timeout: float = Field(
        default=120.0, description="Gemini request timeout in seconds"
    )

    # Grok (alternate model for outlines, articles and clustering)
    grok_api_key: str | None = Field(default=None, description="Grok API key")
    grok_api_url: str = Field(default="https://api.groq.com/openai/v1")
    grok_generative_model: str = Field(default="grok-4-fast-non-reasoning")
    grok_timeout: float = Field(
        default=120.0, description="Grok request timeout in seconds"
    )

    # Tavily (article research)
    tavily_api_key: str | None = Field(default=None, description="Tavily API key")
    tavily_timeout: float = Field(
        default=30.0, description="Tavily request timeout in seconds"
    )

    # Retry policy for every external call made by the pipeline
    retry_retries: int = Field(
        default=3, description="Retries after the first failed attempt"
    )
    retry_factor: float = Field(default=2.0, description="Backoff multiplier")
    retry_initial_delay_ms: float = Field(
        default=500.0, description="Delay before the first retry (ms)"
    )

    # Scheduler
    scheduler_enabled: bool = Field(default=True)
    scheduler_cron_hour: int = Field(default=3, description="Daily run hour")
    scheduler_cron_minute: int = Field(default=0, description="Daily run minute")
    scheduler_timezone: str = Field(default="Asia/Tokyo")
    scheduler_misfire_grace_time: int = Field(
        default=3600, description="Seconds a missed daily run may still start"
    )


@lru_cache
def get_settings() -> Settings:
    """Build the process settings once, for entry points only."""
    return Settings()
