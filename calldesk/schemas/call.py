"""
Data models for provider calls and the unified call record.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, field_validator


class AppointmentStatus(str, Enum):
    UNSET = "unset"
    IN_PROCESS = "in-process"
    SCHEDULED = "scheduled"
    REJECTED = "rejected"
    COMPLETED = "completed"


# Human decisions; the extraction pipeline never touches these again.
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.REJECTED,
    AppointmentStatus.COMPLETED,
})

# Fields an overlay row may carry on top of the provider record.
OVERLAY_FIELDS = (
    "appointment_status",
    "appointment_date",
    "appointment_time",
    "client_name",
    "client_address",
    "client_email",
    "notes",
)


def parse_status(value: Any) -> AppointmentStatus:
    """Map a stored/provider status (None, '', unknown) onto the enum."""
    if isinstance(value, AppointmentStatus):
        return value
    if not value:
        return AppointmentStatus.UNSET
    try:
        return AppointmentStatus(str(value).strip().lower())
    except ValueError:
        return AppointmentStatus.UNSET


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Accept epoch milliseconds, epoch seconds, or ISO-8601 strings.

    Naive datetimes are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class CallRecord(BaseModel):
    """
    Unified view of one call: provider data with the overlay applied.

    Rebuilt on every reconciliation pass; never stored as-is.
    """
    call_id: str
    agent_id: str
    status: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    transcript: Optional[str] = None
    recording_url: Optional[str] = None
    from_number: Optional[str] = None
    analysis: Optional[dict[str, Any]] = None

    appointment_status: AppointmentStatus = AppointmentStatus.UNSET
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    client_email: Optional[str] = None
    notes: Optional[str] = None

    overlay_row_id: Optional[str] = None
    overlay_version: Optional[int] = None
    processed: bool = False

    @field_validator("appointment_status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> AppointmentStatus:
        return parse_status(v)

    @field_validator("started_at", "ended_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Optional[datetime]:
        return parse_timestamp(v)

    @property
    def has_transcript(self) -> bool:
        return bool(self.transcript and self.transcript.strip())

    @property
    def has_appointment(self) -> bool:
        return self.appointment_date is not None or self.appointment_time is not None

    @classmethod
    def from_provider(cls, raw: dict[str, Any], agent_id: str) -> "CallRecord":
        """
        Build a record from one raw provider call object.

        Accepts the provider's wire names (``call_status``,
        ``start_timestamp``, ``call_analysis``) as well as the plain
        field names used here.
        """
        call_id = raw.get("call_id") or raw.get("callId")
        if not call_id:
            raise ValueError("provider call is missing call_id")

        return cls(
            call_id=str(call_id),
            agent_id=str(raw.get("agent_id") or agent_id),
            status=raw.get("call_status", raw.get("status")),
            started_at=raw.get("start_timestamp", raw.get("started_at")),
            ended_at=raw.get("end_timestamp", raw.get("ended_at")),
            transcript=raw.get("transcript"),
            recording_url=raw.get("recording_url"),
            from_number=raw.get("from_number"),
            analysis=raw.get("call_analysis", raw.get("analysis")),
            appointment_status=raw.get("appointment_status"),
            appointment_date=raw.get("appointment_date"),
            appointment_time=raw.get("appointment_time"),
            client_name=raw.get("client_name"),
            client_address=raw.get("client_address"),
            client_email=raw.get("client_email"),
            notes=raw.get("notes"),
        )
