"""
Data models for appointment extraction results.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ExtractionResult(BaseModel):
    """
    Structured guess returned by the extraction service.

    Wire format is camelCase (``appointmentDate``, ``suggestedResponse``);
    snake_case names are accepted too.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    appointment_date: Optional[str] = None
    appointment_time: Optional[str] = None
    client_name: Optional[str] = None
    client_address: Optional[str] = None
    client_email: Optional[str] = None
    confidence: int = Field(default=0, ge=0, le=100)
    suggested_response: Optional[str] = None

    @field_validator(
        "appointment_date",
        "appointment_time",
        "client_name",
        "client_address",
        "client_email",
        "suggested_response",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v: Any) -> Optional[str]:
        # The model sometimes answers with the literal string "null".
        if v is None:
            return None
        text = str(v).strip()
        if not text or text.lower() in ("null", "none", "n/a"):
            return None
        return text

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> int:
        try:
            value = round(float(v))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, value))

    @property
    def has_appointment_data(self) -> bool:
        """True when the result is worth persisting as an in-process appointment."""
        return any((self.appointment_date, self.appointment_time, self.client_email))

    @classmethod
    def empty(cls) -> "ExtractionResult":
        return cls()
