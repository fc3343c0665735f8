"""
Appointment Service.

Operator actions on a call's appointment: accept an extracted suggestion,
reject it, mark a scheduled appointment completed, and edit notes.
Each action validates the status transition against the current unified
record, then writes through the overlay store with the record's overlay
version as the basis, so an action based on an outdated view is refused
instead of overwriting a newer write.
"""

from __future__ import annotations

from typing import Optional

from calldesk.logging_config import get_logger
from calldesk.schemas.call import AppointmentStatus, CallRecord
from calldesk.schemas.overlay import OverlayRow, OverlayUpdate
from calldesk.services.overlay_store import OverlayStore

logger = get_logger(__name__)

S = AppointmentStatus

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.UNSET: frozenset({S.IN_PROCESS}),
    S.IN_PROCESS: frozenset({S.IN_PROCESS, S.SCHEDULED, S.REJECTED}),
    S.SCHEDULED: frozenset({S.COMPLETED, S.REJECTED}),
    S.REJECTED: frozenset({S.IN_PROCESS}),
    S.COMPLETED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when an action does not fit the appointment's current status."""

    def __init__(self, current: AppointmentStatus, target: AppointmentStatus, reason: str = ""):
        message = f"Cannot move appointment from '{current.value}' to '{target.value}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.target = target


def check_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


def _basis(record: CallRecord, expected_version: Optional[int]) -> int:
    if expected_version is not None:
        return expected_version
    return record.overlay_version or 0


async def accept_appointment(
    store: OverlayStore,
    record: CallRecord,
    appointment_date: Optional[str] = None,
    appointment_time: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> OverlayRow:
    """
    Confirm an in-process suggestion as a scheduled appointment.

    The suggested date/time are copied into the confirmed write unless
    the operator supplied replacements.
    """
    check_transition(record.appointment_status, S.SCHEDULED)

    date = appointment_date or record.appointment_date
    time = appointment_time or record.appointment_time
    if not date and not time:
        raise InvalidTransitionError(
            record.appointment_status, S.SCHEDULED, "no appointment date or time to confirm"
        )

    row = await store.upsert(
        OverlayUpdate(
            call_id=record.call_id,
            agent_id=record.agent_id,
            appointment_status=S.SCHEDULED,
            appointment_date=date,
            appointment_time=time,
        ),
        expected_version=_basis(record, expected_version),
    )
    logger.info("appointment_accepted", call_id=record.call_id, date=date, time=time)
    return row


async def reject_appointment(
    store: OverlayStore,
    record: CallRecord,
    expected_version: Optional[int] = None,
) -> OverlayRow:
    """Reject a suggestion (or cancel a scheduled appointment); clears date and time."""
    check_transition(record.appointment_status, S.REJECTED)

    row = await store.upsert(
        OverlayUpdate(
            call_id=record.call_id,
            agent_id=record.agent_id,
            appointment_status=S.REJECTED,
            appointment_date=None,
            appointment_time=None,
        ),
        expected_version=_basis(record, expected_version),
    )
    logger.info("appointment_rejected", call_id=record.call_id)
    return row


async def complete_appointment(
    store: OverlayStore,
    record: CallRecord,
    expected_version: Optional[int] = None,
) -> OverlayRow:
    """Mark a scheduled appointment as completed."""
    check_transition(record.appointment_status, S.COMPLETED)

    row = await store.upsert(
        OverlayUpdate(
            call_id=record.call_id,
            agent_id=record.agent_id,
            appointment_status=S.COMPLETED,
        ),
        expected_version=_basis(record, expected_version),
    )
    logger.info("appointment_completed", call_id=record.call_id)
    return row


async def update_notes(
    store: OverlayStore,
    record: CallRecord,
    notes: Optional[str],
    expected_version: Optional[int] = None,
) -> OverlayRow:
    """Replace the operator notes on a call. Allowed in every status."""
    row = await store.upsert(
        OverlayUpdate(
            call_id=record.call_id,
            agent_id=record.agent_id,
            notes=notes or None,
        ),
        expected_version=_basis(record, expected_version),
    )
    logger.info("call_notes_updated", call_id=record.call_id, cleared=not notes)
    return row
