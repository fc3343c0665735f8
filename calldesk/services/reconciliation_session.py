"""
Reconciliation Session.

One session per agent owns the per-agent pipeline state: the unified
record set, the known-ID set (change detection), the processed set
(extraction gating), the refresh gate and the background extraction
batches. Nothing here is shared across agents, and everything runs on a
single event loop; the only lock is the orchestrator's, which keeps
overlapping batches down to one extraction in flight.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from calldesk.config import Settings, get_settings
from calldesk.logging_config import agent_id_var, get_logger
from calldesk.schemas.call import CallRecord
from calldesk.schemas.overlay import OverlayRow
from calldesk.services.appointment_extraction import extract_appointment
from calldesk.services.call_source import CallSourceClient, CallSourceError
from calldesk.services.change_detector import ChangeDetector
from calldesk.services.extraction_orchestrator import (
    BatchReport,
    CancellationToken,
    ExtractionOrchestrator,
    Extractor,
    is_eligible,
)
from calldesk.services.notifier import NotificationKind, NotificationLevel, Notifier
from calldesk.services.overlay_store import OverlayStore, OverlayStoreError
from calldesk.services.reconciler import find_orphans, merge_record, reconcile

logger = get_logger(__name__)


class RefreshError(Exception):
    """Raised when a reconciliation pass is aborted by a fetch failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class RefreshResult:
    refreshed: bool
    records: list[CallRecord]
    new_call_ids: set[str] = field(default_factory=set)
    orphaned_rows: int = 0
    extraction_scheduled: bool = False


class ReconciliationSession:
    """Fetch, merge, detect and dispatch for one agent."""

    def __init__(
        self,
        agent_id: str,
        source: CallSourceClient,
        store: OverlayStore,
        extractor: Extractor = extract_appointment,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.agent_id = agent_id
        self._settings = settings or get_settings()
        self._source = source
        self._store = store
        self._clock = clock

        self.change_detector = ChangeDetector()
        self.processed_ids: set[str] = set()
        self.notifier = Notifier(agent_id, maxlen=self._settings.notification_buffer_size)
        self.orchestrator = ExtractionOrchestrator(
            store=store,
            notifier=self.notifier,
            processed_ids=self.processed_ids,
            extractor=extractor,
            on_persisted=self._apply_record,
            confidence_threshold=self._settings.notification_confidence_threshold,
        )

        self._provider_records: dict[str, CallRecord] = {}
        self._records: dict[str, CallRecord] = {}
        self._last_fetch: Optional[float] = None
        self._batches: set[asyncio.Task[BatchReport]] = set()
        self._current_token: Optional[CancellationToken] = None

    # -- Views --

    @property
    def records(self) -> list[CallRecord]:
        return list(self._records.values())

    @property
    def store(self) -> OverlayStore:
        return self._store

    def get_record(self, call_id: str) -> CallRecord | None:
        return self._records.get(call_id)

    @property
    def extraction_running(self) -> bool:
        return any(not t.done() for t in self._batches)

    # -- Refresh --

    def _throttled(self) -> bool:
        if self._last_fetch is None:
            return False
        return self._clock() - self._last_fetch < self._settings.refresh_min_interval_seconds

    async def refresh(self, force: bool = False) -> RefreshResult:
        """
        Run one reconciliation pass.

        A trigger arriving within ``refresh_min_interval_seconds`` of the
        previous one is dropped (not queued) unless ``force`` is set.

        Raises:
            RefreshError: provider or overlay fetch failed. The previous
                unified records are kept.
        """
        if not force and self._throttled():
            logger.debug("refresh_throttled", agent_id=self.agent_id)
            return RefreshResult(refreshed=False, records=self.records)

        self._last_fetch = self._clock()
        context_token = agent_id_var.set(self.agent_id)
        try:
            return await self._run_pass()
        finally:
            agent_id_var.reset(context_token)

    async def _run_pass(self) -> RefreshResult:
        provider_result, overlay_result = await asyncio.gather(
            self._source.fetch_calls(self.agent_id),
            self._store.fetch_by_agent(self.agent_id),
            return_exceptions=True,
        )
        for outcome in (provider_result, overlay_result):
            if isinstance(outcome, BaseException):
                self._fail_refresh(outcome)

        unified = reconcile(provider_result, overlay_result)

        orphans = find_orphans(provider_result, overlay_result)
        if orphans:
            logger.info(
                "overlay_rows_without_call",
                agent_id=self.agent_id,
                count=len(orphans),
                call_ids=[row.call_id for row in orphans],
            )

        unified = [
            r.model_copy(update={"processed": True}) if r.call_id in self.processed_ids else r
            for r in unified
        ]
        self._provider_records = {r.call_id: r for r in provider_result}
        self._records = {r.call_id: r for r in unified}

        new_ids = self.change_detector.observe(self._records.keys())
        if new_ids:
            self.notifier.notify(
                NotificationKind.NEW_CALLS,
                f"{len(new_ids)} new call{'s' if len(new_ids) != 1 else ''} received",
            )

        scheduled = self._dispatch_batch(unified)

        logger.info(
            "reconcile_complete",
            agent_id=self.agent_id,
            records=len(unified),
            new=len(new_ids),
            orphaned=len(orphans),
            extraction_scheduled=scheduled,
        )
        return RefreshResult(
            refreshed=True,
            records=self.records,
            new_call_ids=new_ids,
            orphaned_rows=len(orphans),
            extraction_scheduled=scheduled,
        )

    def _fail_refresh(self, error: BaseException) -> None:
        if isinstance(error, asyncio.CancelledError):
            raise error
        status_code = error.status_code if isinstance(error, CallSourceError) else None
        if isinstance(error, (CallSourceError, OverlayStoreError)):
            message = str(error)
        else:
            message = f"Unexpected error while loading calls: {error}"
        logger.error("refresh_failed", agent_id=self.agent_id, error=message, status_code=status_code)
        self.notifier.notify(
            NotificationKind.REFRESH_FAILED,
            "Failed to load calls",
            level=NotificationLevel.ERROR,
        )
        raise RefreshError(message, status_code=status_code) from error

    # -- Extraction --

    def _dispatch_batch(self, records: list[CallRecord]) -> bool:
        if not any(is_eligible(r, self.processed_ids) for r in records):
            return False

        if self._settings.cancel_stale_batches and self._current_token is not None:
            self._current_token.cancel()

        token = CancellationToken()
        self._current_token = token
        task = asyncio.create_task(self.orchestrator.process_batch(records, token))
        self._batches.add(task)
        task.add_done_callback(self._batch_done)
        return True

    def _batch_done(self, task: asyncio.Task[BatchReport]) -> None:
        self._batches.discard(task)
        if task.cancelled():
            logger.info("extraction_batch_task_cancelled", agent_id=self.agent_id)
            return
        error = task.exception()
        if error is not None:
            logger.error("extraction_batch_crashed", agent_id=self.agent_id, error=str(error))

    async def wait_for_extractions(self) -> list[BatchReport]:
        """Wait for every running extraction batch and return their reports."""
        reports: list[BatchReport] = []
        while self._batches:
            results = await asyncio.gather(*list(self._batches), return_exceptions=True)
            reports.extend(r for r in results if isinstance(r, BatchReport))
        return reports

    async def extract_now(self, call_id: str) -> CallRecord:
        """
        Run extraction for one record on explicit request.

        Used to re-analyse a rejected suggestion; bypasses the processed
        set and the status gate, but still requires a transcript.
        """
        record = self._records.get(call_id)
        if record is None:
            raise KeyError(call_id)
        await self.orchestrator.extract_one(record)
        # A refresh during the extraction may have dropped the call.
        return self._records.get(call_id, record)

    # -- Local view updates --

    def _apply_record(self, record: CallRecord) -> None:
        if record.call_id in self._records:
            self._records[record.call_id] = record

    def apply_overlay_row(self, row: OverlayRow) -> CallRecord | None:
        """Fold a freshly written overlay row into the unified view."""
        current = self._records.get(row.call_id)
        base = self._provider_records.get(row.call_id)
        if current is None or base is None:
            return None
        # Re-merge from the provider snapshot so fields the write cleared
        # (reject clears date/time) fall back exactly as a full pass would.
        updated = merge_record(base, row).model_copy(update={"processed": current.processed})
        self._records[row.call_id] = updated
        return updated

    async def close(self) -> None:
        for task in list(self._batches):
            task.cancel()
        if self._batches:
            await asyncio.gather(*list(self._batches), return_exceptions=True)


class SessionRegistry:
    """Hands out one ReconciliationSession per agent ID."""

    def __init__(self, factory: Callable[[str], ReconciliationSession] | None = None) -> None:
        self._factory = factory or _default_session
        self._sessions: dict[str, ReconciliationSession] = {}

    def get(self, agent_id: str) -> ReconciliationSession:
        session = self._sessions.get(agent_id)
        if session is None:
            session = self._factory(agent_id)
            self._sessions[agent_id] = session
            logger.info("session_created", agent_id=agent_id)
        return session

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._sessions

    async def close_all(self) -> None:
        for session in self._sessions.values():
            await session.close()
        self._sessions.clear()


def _default_session(agent_id: str) -> ReconciliationSession:
    return ReconciliationSession(
        agent_id=agent_id,
        source=CallSourceClient(),
        store=OverlayStore(),
    )
