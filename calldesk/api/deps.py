"""
Shared FastAPI dependencies.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from calldesk.schemas.call import CallRecord
from calldesk.services.reconciliation_session import ReconciliationSession, SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_session(agent_id: str, request: Request) -> ReconciliationSession:
    return get_registry(request).get(agent_id)


def require_record(session: ReconciliationSession, call_id: str) -> CallRecord:
    """Return the unified record or 404 when the call is not in the current view."""
    record = session.get_record(call_id)
    if record is None:
        raise HTTPException(
            status_code=404,
            detail="Call not found; refresh the call list first",
        )
    return record
