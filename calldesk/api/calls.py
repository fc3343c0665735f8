"""
API Router: Call List Endpoints.

Triggers reconciliation passes and serves the unified call view,
notifications and dashboard analytics for one agent.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from calldesk.logging_config import get_logger
from calldesk.schemas.call import CallRecord
from calldesk.services import call_analytics
from calldesk.services.notifier import Notification
from calldesk.services.reconciliation_session import ReconciliationSession, RefreshError
from calldesk.api.deps import get_session

logger = get_logger(__name__)
router = APIRouter(prefix="/agents/{agent_id}", tags=["Calls"])


class RefreshResponse(BaseModel):
    refreshed: bool
    new_call_ids: list[str]
    extraction_scheduled: bool
    records: list[CallRecord]


def _matches(record: CallRecord, query: str) -> bool:
    query = query.lower()
    return any(
        query in (value or "").lower()
        for value in (record.call_id, record.status, record.transcript)
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_calls(
    force: bool = False,
    session: ReconciliationSession = Depends(get_session),
) -> RefreshResponse:
    """Run a reconciliation pass (dropped if one ran moments ago)."""
    try:
        result = await session.refresh(force=force)
    except RefreshError as e:
        logger.error("refresh_endpoint_error", agent_id=session.agent_id, error=str(e))
        raise HTTPException(status_code=502, detail=str(e))

    return RefreshResponse(
        refreshed=result.refreshed,
        new_call_ids=sorted(result.new_call_ids),
        extraction_scheduled=result.extraction_scheduled,
        records=result.records,
    )


@router.get("/calls", response_model=list[CallRecord])
async def list_calls(
    search: str | None = None,
    session: ReconciliationSession = Depends(get_session),
) -> list[CallRecord]:
    """Current unified records, optionally filtered by call ID, status or transcript."""
    records = session.records
    if search and search.strip():
        records = [r for r in records if _matches(r, search.strip())]
    return records


@router.get("/notifications", response_model=list[Notification])
async def drain_notifications(
    session: ReconciliationSession = Depends(get_session),
) -> list[Notification]:
    """Return and clear pending notifications."""
    return session.notifier.drain()


@router.get("/stats", response_model=call_analytics.CallStats)
async def get_stats(
    session: ReconciliationSession = Depends(get_session),
) -> call_analytics.CallStats:
    return call_analytics.build_stats(session.records)


@router.get("/appointments/today", response_model=list[CallRecord])
async def get_todays_appointments(
    session: ReconciliationSession = Depends(get_session),
) -> list[CallRecord]:
    return call_analytics.todays_appointments(session.records)


@router.get("/calendar", response_model=list[call_analytics.CalendarEvent])
async def get_calendar(
    session: ReconciliationSession = Depends(get_session),
) -> list[call_analytics.CalendarEvent]:
    return call_analytics.calendar_events(session.records)


@router.get("/status")
async def get_session_status(
    session: ReconciliationSession = Depends(get_session),
) -> dict[str, Any]:
    """Lightweight session diagnostics."""
    return {
        "agent_id": session.agent_id,
        "records": len(session.records),
        "known_ids": len(session.change_detector.known_ids),
        "processed_ids": len(session.processed_ids),
        "extraction_running": session.extraction_running,
        "pending_notifications": len(session.notifier),
    }
