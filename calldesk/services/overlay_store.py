"""
Overlay Store Client.

Typed read/upsert access to the per-call overlay table in Supabase.
Rows are keyed by (call_id, agent_id) and carry a monotonic ``version``
that every write bumps. Updates are compare-and-set on that version, so
a manual edit and an automatic extraction racing on the same call can
never silently clobber each other when the caller passes the version
its write was based on.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from supabase import Client

from calldesk.config import get_settings
from calldesk.db import get_db
from calldesk.logging_config import get_logger
from calldesk.schemas.overlay import OverlayRow, OverlayUpdate

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"


class OverlayStoreError(Exception):
    """Raised when the overlay table cannot be read or written."""

    def __init__(self, message: str, call_id: str | None = None):
        super().__init__(message)
        self.call_id = call_id


class StaleWriteError(OverlayStoreError):
    """Raised when a write was based on an older row version than the stored one."""

    def __init__(self, call_id: str, expected_version: int | None, stored_version: int | None):
        super().__init__(
            f"Stale write for call {call_id}: based on version {expected_version}, "
            f"stored version is {stored_version}",
            call_id=call_id,
        )
        self.expected_version = expected_version
        self.stored_version = stored_version


class OverlayStore:
    """Read and upsert overlay rows for one Supabase table."""

    def __init__(self, client: Client | None = None, table: str | None = None) -> None:
        self._client = client
        self._table = table or get_settings().overlay_table

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_db().client
        return self._client

    async def fetch_by_agent(self, agent_id: str) -> list[OverlayRow]:
        """Return every overlay row owned by ``agent_id``."""
        try:
            response = (
                self.client.table(self._table)
                .select("*")
                .eq("agent_id", agent_id)
                .execute()
            )
        except Exception as e:
            logger.error("overlay_fetch_error", agent_id=agent_id, error=str(e))
            raise OverlayStoreError(f"Failed to fetch overlay rows: {e}") from e

        return [OverlayRow.model_validate(row) for row in response.data or []]

    async def get(self, call_id: str, agent_id: str) -> OverlayRow | None:
        """Return the overlay row for one call, or None when none exists yet."""
        try:
            response = (
                self.client.table(self._table)
                .select("*")
                .eq("call_id", call_id)
                .eq("agent_id", agent_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("overlay_get_error", call_id=call_id, error=str(e))
            raise OverlayStoreError(f"Failed to read overlay row: {e}", call_id=call_id) from e

        if not response.data:
            return None
        return OverlayRow.model_validate(response.data[0])

    async def upsert(
        self,
        update: OverlayUpdate,
        expected_version: int | None = None,
    ) -> OverlayRow:
        """
        Create or update the overlay row for ``update.call_id``.

        Args:
            update: Fields to write. Unset fields are left untouched.
            expected_version: Version the caller's view was based on
                (0 when it saw no row). ``None`` means last write wins.

        Returns:
            The stored row after the write.

        Raises:
            StaleWriteError: the stored row is newer than ``expected_version``,
                or another writer bumped it between our read and our update.
            OverlayStoreError: any other store failure.
        """
        existing = await self.get(update.call_id, update.agent_id)

        if existing is None:
            try:
                return await self._insert(update)
            except OverlayStoreError as e:
                if getattr(e.__cause__, "code", None) != UNIQUE_VIOLATION:
                    raise
                # Lost an insert race; the winner's row is there now.
                logger.info("overlay_insert_conflict", call_id=update.call_id)
                existing = await self.get(update.call_id, update.agent_id)
                if existing is None:
                    raise

        if expected_version is not None and expected_version < existing.version:
            logger.warning(
                "overlay_stale_write",
                call_id=update.call_id,
                expected_version=expected_version,
                stored_version=existing.version,
            )
            raise StaleWriteError(update.call_id, expected_version, existing.version)

        return await self._update(existing, update)

    async def _insert(self, update: OverlayUpdate) -> OverlayRow:
        payload: dict[str, Any] = {
            "call_id": update.call_id,
            "agent_id": update.agent_id,
            **update.changes(),
            "version": 1,
            "updated_at": _now_iso(),
        }
        try:
            response = self.client.table(self._table).insert(payload).execute()
        except Exception as e:
            logger.error("overlay_insert_error", call_id=update.call_id, error=str(e))
            raise OverlayStoreError(f"Failed to insert overlay row: {e}", call_id=update.call_id) from e

        if not response.data:
            raise OverlayStoreError("Insert returned no row", call_id=update.call_id)

        row = OverlayRow.model_validate(response.data[0])
        logger.info("overlay_row_created", call_id=row.call_id, row_id=row.id)
        return row

    async def _update(self, existing: OverlayRow, update: OverlayUpdate) -> OverlayRow:
        payload: dict[str, Any] = {
            **update.changes(),
            "version": existing.version + 1,
            "updated_at": _now_iso(),
        }
        try:
            response = (
                self.client.table(self._table)
                .update(payload)
                .eq("id", existing.id)
                .eq("version", existing.version)
                .execute()
            )
        except Exception as e:
            logger.error("overlay_update_error", call_id=update.call_id, error=str(e))
            raise OverlayStoreError(f"Failed to update overlay row: {e}", call_id=update.call_id) from e

        if not response.data:
            # Someone else bumped the version between our read and this write.
            current = await self.get(update.call_id, update.agent_id)
            raise StaleWriteError(
                update.call_id,
                existing.version,
                current.version if current else None,
            )

        row = OverlayRow.model_validate(response.data[0])
        logger.info("overlay_row_updated", call_id=row.call_id, row_id=row.id, version=row.version)
        return row


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
