"""
API Router: Appointment Actions.

Accept / reject / complete an appointment, edit notes, or ask for a
fresh extraction of one call. Every write goes through the overlay
store with a version basis; a write based on an outdated view gets 409.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from calldesk.api.deps import get_session, require_record
from calldesk.logging_config import get_logger
from calldesk.schemas.call import CallRecord
from calldesk.services import appointment_service
from calldesk.services.appointment_service import InvalidTransitionError
from calldesk.services.notifier import NotificationKind, NotificationLevel
from calldesk.services.overlay_store import OverlayStoreError, StaleWriteError
from calldesk.services.reconciliation_session import ReconciliationSession

logger = get_logger(__name__)
router = APIRouter(prefix="/agents/{agent_id}/calls/{call_id}", tags=["Appointments"])


class VersionedAction(BaseModel):
    expected_version: Optional[int] = None


class AcceptRequest(VersionedAction):
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None


class NotesRequest(VersionedAction):
    notes: Optional[str] = None


async def _run(session: ReconciliationSession, call_id: str, action, **kwargs) -> CallRecord:
    record = require_record(session, call_id)
    try:
        row = await action(session.store, record, **kwargs)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StaleWriteError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except OverlayStoreError as e:
        logger.error("appointment_action_error", call_id=call_id, error=str(e))
        session.notifier.notify(
            NotificationKind.PERSISTENCE_FAILED,
            f"Failed to update call {call_id}",
            level=NotificationLevel.ERROR,
            call_id=call_id,
        )
        raise HTTPException(status_code=500, detail=str(e))

    status = row.appointment_status.value if row.appointment_status else "no appointment"
    session.notifier.notify(
        NotificationKind.APPOINTMENT_UPDATED,
        f"Call {call_id} saved ({status})",
        level=NotificationLevel.SUCCESS,
        call_id=call_id,
    )
    updated = session.apply_overlay_row(row)
    return updated or record


@router.post("/accept", response_model=CallRecord)
async def accept(
    call_id: str,
    body: AcceptRequest | None = None,
    session: ReconciliationSession = Depends(get_session),
) -> CallRecord:
    """Confirm the suggested appointment (optionally with a corrected date/time)."""
    body = body or AcceptRequest()
    return await _run(
        session,
        call_id,
        appointment_service.accept_appointment,
        appointment_date=body.appointment_date,
        appointment_time=body.appointment_time,
        expected_version=body.expected_version,
    )


@router.post("/reject", response_model=CallRecord)
async def reject(
    call_id: str,
    body: VersionedAction | None = None,
    session: ReconciliationSession = Depends(get_session),
) -> CallRecord:
    body = body or VersionedAction()
    return await _run(
        session,
        call_id,
        appointment_service.reject_appointment,
        expected_version=body.expected_version,
    )


@router.post("/complete", response_model=CallRecord)
async def complete(
    call_id: str,
    body: VersionedAction | None = None,
    session: ReconciliationSession = Depends(get_session),
) -> CallRecord:
    body = body or VersionedAction()
    return await _run(
        session,
        call_id,
        appointment_service.complete_appointment,
        expected_version=body.expected_version,
    )


@router.put("/notes", response_model=CallRecord)
async def put_notes(
    call_id: str,
    body: NotesRequest,
    session: ReconciliationSession = Depends(get_session),
) -> CallRecord:
    return await _run(
        session,
        call_id,
        appointment_service.update_notes,
        notes=body.notes,
        expected_version=body.expected_version,
    )


@router.post("/extract", response_model=CallRecord)
async def extract(
    call_id: str,
    session: ReconciliationSession = Depends(get_session),
) -> CallRecord:
    """Re-run extraction for one call (e.g. after rejecting a bad suggestion)."""
    require_record(session, call_id)
    try:
        return await session.extract_now(call_id)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
