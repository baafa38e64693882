"""
Unified configuration for mnemo services.

This module provides a single Settings class that consolidates all
environment variables used by the agent runtime and the background worker.
Library classes never read this module directly; entry points build their
configuration objects from it via ``from_settings``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for all mnemo services.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "mnemo"
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Agent stepping limits
    AGENT_MAX_STEPS: int = 100
    AGENT_MAX_CHAINING_STEPS: int = 20
    AGENT_MAX_TOKENS: int = 100000
    AGENT_TEMPERATURE: float = 0.7
    AGENT_MAX_OUTPUT_TOKENS: int = 4096
    AGENT_CONTEXT_MESSAGE_LIMIT: int = 100

    # Background queue
    QUEUE_CONCURRENCY: int = 5
    QUEUE_DEFAULT_MAX_ATTEMPTS: int = 3
    QUEUE_RETRY_DELAY_MS: int = 5000
    QUEUE_POLL_INTERVAL_MS: int = 1000

    # Worker
    WORKER_ENABLE_MEMORY_PROCESSING: bool = True
    WORKER_ENABLE_CLEANUP: bool = True

    # Retention
    MEMORY_RETENTION_DAYS: int = 90
    TRACE_RETENTION_DAYS: int = 30

    # Persistence retry
    PERSISTENCE_RETRY_ATTEMPTS: int = 3
    PERSISTENCE_RETRY_BASE_DELAY: float = 0.5

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore
