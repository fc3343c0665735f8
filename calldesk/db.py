"""
Supabase Database Client.

Provides a singleton instance of the Supabase client. The overlay store
talks to Supabase only through this wrapper, so the underlying client can
be swapped (or faked in tests) without touching business logic.
"""

from __future__ import annotations

from typing import Optional

from supabase import Client, create_client

from calldesk.config import get_settings
from calldesk.logging_config import get_logger

logger = get_logger(__name__)


class DatabaseClient:
    """Wrapper around the official Supabase Python client."""

    _instance: Optional[DatabaseClient] = None
    _client: Client

    def __new__(cls) -> DatabaseClient:
        """Singleton pattern to ensure only one client instance."""
        if cls._instance is None:
            instance = super().__new__(cls)
            settings = get_settings()

            if not settings.supabase_url or not settings.supabase_service_key:
                logger.warning(
                    "Supabase credentials missing. Overlay operations will fail.",
                    url=bool(settings.supabase_url),
                    key=bool(settings.supabase_service_key),
                )

            try:
                instance._client = create_client(
                    settings.supabase_url,
                    settings.supabase_service_key,
                )
                logger.info("Supabase client initialized", url=settings.supabase_url)
            except Exception as e:
                logger.error("Failed to initialize Supabase client", error=str(e))
                raise

            cls._instance = instance

        return cls._instance

    @property
    def client(self) -> Client:
        """Access the raw Supabase client."""
        return self._client


# Global accessor
def get_db() -> DatabaseClient:
    return DatabaseClient()
