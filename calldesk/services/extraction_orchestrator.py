"""
Extraction Orchestrator.

Runs the appointment extractor over the unprocessed, transcript-bearing,
appointment-free records of a reconciliation pass and persists what it
finds as ``in-process`` appointments.

Guarantees:
- Records are handled strictly one at a time, in input order, and at
  most one extraction is in flight per orchestrator even when several
  batches overlap.
- A record is marked processed as soon as its extraction returns or
  fails, and is never sent to the extractor again in this session.
- One record failing (extractor error, store error, stale write) never
  stops the batch.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, MutableSet, Optional

from calldesk.config import get_settings
from calldesk.logging_config import get_logger
from calldesk.schemas.call import TERMINAL_STATUSES, AppointmentStatus, CallRecord
from calldesk.schemas.extraction import ExtractionResult
from calldesk.schemas.overlay import OverlayUpdate
from calldesk.services.appointment_extraction import extract_appointment
from calldesk.services.appointment_service import check_transition
from calldesk.services.notifier import NotificationKind, NotificationLevel, Notifier
from calldesk.services.overlay_store import OverlayStore, OverlayStoreError, StaleWriteError
from calldesk.services.reconciler import merge_record

logger = get_logger(__name__)

Extractor = Callable[[str, Optional[datetime]], Awaitable[ExtractionResult]]
RecordCallback = Callable[[CallRecord], None]


class CancellationToken:
    """Cooperative cancel flag checked between records."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class BatchReport:
    eligible: int = 0
    attempted: int = 0
    persisted: int = 0
    notified: int = 0
    failed: int = 0
    conflicts: int = 0
    skipped: int = 0
    cancelled: bool = False


def is_eligible(record: CallRecord, processed_ids: Iterable[str] = ()) -> bool:
    """
    Whether a record should go through automatic extraction.

    Keyed on status rather than field nullness: a rejected record has its
    date/time cleared but must not be re-offered.
    """
    if not record.has_transcript:
        return False
    if record.processed or record.call_id in processed_ids:
        return False
    if record.appointment_status in TERMINAL_STATUSES:
        return False
    return not record.has_appointment


def describe_detection(record: CallRecord, result: ExtractionResult) -> str:
    when = " at ".join(p for p in (result.appointment_date, result.appointment_time) if p)
    subject = result.client_name or record.from_number or f"call {record.call_id}"
    if when:
        detail = f"appointment for {when}"
    else:
        detail = f"contact email {result.client_email}"
    return f"Detected {detail} from {subject} ({result.confidence}% confidence)"


def _stop_if_cancelled(token: CancellationToken | None, report: BatchReport, remaining: int) -> bool:
    if token is None or not token.cancelled:
        return False
    report.cancelled = True
    report.skipped += remaining
    logger.info("extraction_batch_cancelled", remaining=remaining)
    return True


class ExtractionOrchestrator:
    """Sequential extraction over one agent's records."""

    def __init__(
        self,
        store: OverlayStore,
        notifier: Notifier,
        processed_ids: MutableSet[str],
        extractor: Extractor = extract_appointment,
        on_persisted: RecordCallback | None = None,
        confidence_threshold: int | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._processed = processed_ids
        self._extractor = extractor
        self._on_persisted = on_persisted
        if confidence_threshold is None:
            confidence_threshold = get_settings().notification_confidence_threshold
        self._threshold = confidence_threshold
        # Held for the whole extract-and-persist step of one record.
        self._lock = asyncio.Lock()

    def select_eligible(self, records: Iterable[CallRecord]) -> list[CallRecord]:
        return [r for r in records if is_eligible(r, self._processed)]

    async def process_batch(
        self,
        records: Iterable[CallRecord],
        token: CancellationToken | None = None,
    ) -> BatchReport:
        """
        Extract and persist appointments for every eligible record.

        The token is checked between records; a record whose extraction
        already started is allowed to finish.
        """
        queue = deque(self.select_eligible(records))
        report = BatchReport(eligible=len(queue))
        logger.info("extraction_batch_started", eligible=report.eligible)

        while queue:
            if _stop_if_cancelled(token, report, len(queue)):
                break

            record = queue.popleft()
            async with self._lock:
                # Waiting for the lock counts as between records.
                if _stop_if_cancelled(token, report, len(queue) + 1):
                    break
                # An overlapping batch may have handled it while we waited.
                if record.call_id in self._processed:
                    report.skipped += 1
                    continue
                await self._process_one(record, report)

        logger.info(
            "extraction_batch_finished",
            eligible=report.eligible,
            attempted=report.attempted,
            persisted=report.persisted,
            notified=report.notified,
            failed=report.failed,
            conflicts=report.conflicts,
            skipped=report.skipped,
        )
        return report

    async def extract_one(self, record: CallRecord) -> BatchReport:
        """
        Extract a single record on explicit request.

        Skips the processed/eligibility gate (this is how a rejected
        suggestion re-enters ``in-process``) but never touches a scheduled
        or completed appointment.

        Raises:
            InvalidTransitionError: the record's status cannot move to in-process.
        """
        check_transition(record.appointment_status, AppointmentStatus.IN_PROCESS)
        report = BatchReport(eligible=1)
        if not record.has_transcript:
            report.skipped = 1
            return report
        async with self._lock:
            await self._process_one(record, report)
        return report

    async def _process_one(self, record: CallRecord, report: BatchReport) -> None:
        report.attempted += 1
        try:
            result = await self._extractor(record.transcript or "", record.started_at)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("extraction_call_failed", call_id=record.call_id, error=str(e))
            result = ExtractionResult.empty()
            report.failed += 1

        self._processed.add(record.call_id)

        if not result.has_appointment_data:
            logger.debug("extraction_no_appointment", call_id=record.call_id)
            return

        update = self._build_update(record, result)
        try:
            row = await self._store.upsert(update, expected_version=record.overlay_version or 0)
        except StaleWriteError as e:
            report.conflicts += 1
            self._notifier.notify(
                NotificationKind.STALE_WRITE,
                f"Call {record.call_id} was edited while its transcript was being analysed; "
                "the detected appointment was not saved",
                level=NotificationLevel.WARNING,
                call_id=record.call_id,
            )
            logger.warning("extraction_stale_write", call_id=record.call_id, error=str(e))
            return
        except OverlayStoreError as e:
            report.failed += 1
            self._notifier.notify(
                NotificationKind.PERSISTENCE_FAILED,
                f"Failed to save the detected appointment for call {record.call_id}",
                level=NotificationLevel.ERROR,
                call_id=record.call_id,
            )
            logger.error("extraction_persist_failed", call_id=record.call_id, error=str(e))
            return

        report.persisted += 1
        updated = merge_record(record, row).model_copy(update={"processed": True})
        if self._on_persisted is not None:
            self._on_persisted(updated)

        logger.info(
            "extraction_persisted",
            call_id=record.call_id,
            row_id=row.id,
            confidence=result.confidence,
        )

        if result.confidence >= self._threshold:
            report.notified += 1
            self._notifier.notify(
                NotificationKind.APPOINTMENT_DETECTED,
                describe_detection(record, result),
                level=NotificationLevel.SUCCESS,
                call_id=record.call_id,
            )

    @staticmethod
    def _build_update(record: CallRecord, result: ExtractionResult) -> OverlayUpdate:
        fields: dict[str, str] = {}
        if result.appointment_date:
            fields["appointment_date"] = result.appointment_date
        if result.appointment_time:
            fields["appointment_time"] = result.appointment_time
        # Contact details already on the record came from a human or the
        # provider; only fill the gaps.
        for name in ("client_email", "client_name", "client_address"):
            value = getattr(result, name)
            if value and not getattr(record, name):
                fields[name] = value

        return OverlayUpdate(
            call_id=record.call_id,
            agent_id=record.agent_id,
            appointment_status=AppointmentStatus.IN_PROCESS,
            **fields,
        )
