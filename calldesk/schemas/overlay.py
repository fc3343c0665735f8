"""
Data models for persisted per-call overlay rows.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from calldesk.schemas.call import OVERLAY_FIELDS, AppointmentStatus, parse_status


class OverlayRow(BaseModel):
    """One row of the overlay table; unique on (call_id, agent_id)."""
    id: str
    call_id: str
    agent_id: str
    appointment_status: Optional[AppointmentStatus] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    client_email: Optional[str] = None
    notes: Optional[str] = None
    version: int = 1
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("appointment_status", mode="before")
    @classmethod
    def _coerce_status(cls, v: Any) -> Optional[AppointmentStatus]:
        status = parse_status(v)
        return None if status is AppointmentStatus.UNSET else status

    @field_validator("version", mode="before")
    @classmethod
    def _default_version(cls, v: Any) -> int:
        # Rows written before versioning existed carry NULL.
        return 1 if v is None else v


class OverlayUpdate(BaseModel):
    """
    A partial overlay write keyed by (call_id, agent_id).

    Only fields that were explicitly set are written, so ``notes=None``
    clears the notes while an omitted ``notes`` leaves them alone.
    """
    call_id: str
    agent_id: str
    appointment_status: Optional[AppointmentStatus] = None
    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    client_email: Optional[str] = None
    notes: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        """Overlay columns explicitly set on this update, JSON-ready."""
        data = self.model_dump(mode="json", include=set(OVERLAY_FIELDS), exclude_unset=True)
        if data.get("appointment_status") == AppointmentStatus.UNSET.value:
            data["appointment_status"] = None
        return data
