"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default for local
development so the app can start with minimal configuration.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Central configuration for the calldesk service.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed; use `.env.example` as the template.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── Supabase (overlay store) ─────────────────────────────────
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")
    overlay_table: str = Field(default="call_logs", description="Table holding per-call overlay rows")

    # ── Call provider ────────────────────────────────────────────
    call_source_url: str = Field(
        default="https://api.retellai.com/v2/list-calls",
        description="Provider list-calls endpoint",
    )
    call_source_api_key: str = Field(default="", description="Provider API key")
    call_source_limit: int = Field(default=50, ge=1, le=1000, description="Max calls fetched per pass")
    call_source_timeout_seconds: float = Field(default=20.0, gt=0, description="Provider request timeout")

    # ── Extraction (LLM) ─────────────────────────────────────────
    openai_api_key: str = Field(default="", description="OpenAI API key for appointment extraction")
    extraction_model: str = Field(default="gpt-4o", description="Chat model used for extraction")
    extraction_timeout_seconds: float = Field(default=30.0, gt=0, description="Extraction request timeout")
    extraction_min_transcript_chars: int = Field(
        default=50, ge=0, description="Transcripts shorter than this are not sent to the LLM"
    )

    # ── Pipeline behaviour ───────────────────────────────────────
    notification_confidence_threshold: int = Field(
        default=70, ge=0, le=100, description="Minimum extraction confidence that triggers a notification"
    )
    refresh_min_interval_seconds: float = Field(
        default=10.0, ge=0, description="Refreshes arriving sooner than this after the last one are dropped"
    )
    refresh_poll_interval_seconds: float = Field(default=30.0, gt=0, description="Worker polling interval")
    cancel_stale_batches: bool = Field(
        default=False, description="Cancel an in-flight extraction batch when a new pass starts"
    )
    notification_buffer_size: int = Field(default=100, ge=1, description="Notifications kept per agent")
    worker_agent_ids: str = Field(default="", description="Comma-separated agent IDs polled by the worker")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def agent_ids(self) -> list[str]:
        return [a.strip() for a in self.worker_agent_ids.split(",") if a.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
