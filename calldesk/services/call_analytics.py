"""
Call analytics for the dashboard: sentiment and status breakdowns,
average duration, completion rate, the daily call trend, today's
appointments and calendar events, all computed from the unified
record set.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from calldesk.schemas.call import AppointmentStatus, CallRecord

TREND_DAYS = 7


class CountBucket(BaseModel):
    name: str
    value: int


class TrendPoint(BaseModel):
    day: date
    calls: int


class CallStats(BaseModel):
    total_calls: int
    sentiment: list[CountBucket]
    call_status: list[CountBucket]
    appointment_status: list[CountBucket]
    trend: list[TrendPoint]
    average_duration_seconds: Optional[float] = None
    completion_rate: Optional[int] = None


class CalendarEvent(BaseModel):
    id: str
    call_id: str
    title: str
    date: str
    time: str
    status: AppointmentStatus


def _buckets(counter: Counter) -> list[CountBucket]:
    return [CountBucket(name=name, value=count) for name, count in counter.items()]


def _label(value: str) -> str:
    # Upper-case the first letter only; "in_Progress" stays "In_Progress".
    return value[:1].upper() + value[1:]


def _sentiment(record: CallRecord) -> str:
    analysis: dict[str, Any] = record.analysis or {}
    raw = analysis.get("user_sentiment") or "unknown"
    return _label(str(raw).lower())


def _average_duration(records: list[CallRecord]) -> Optional[float]:
    """Mean of ended_at - started_at over calls carrying both, in seconds."""
    durations = [
        (r.ended_at - r.started_at).total_seconds()
        for r in records
        if r.started_at and r.ended_at
    ]
    if not durations:
        return None
    return round(sum(durations) / len(durations), 1)


def _completion_rate(records: list[CallRecord]) -> Optional[int]:
    """Percentage of calls whose provider status is "completed"."""
    if not records:
        return None
    completed = sum(1 for r in records if r.status == "completed")
    # Half rounds up, as the dashboard shows it.
    return int(completed * 100 / len(records) + 0.5)


def build_stats(records: Iterable[CallRecord]) -> CallStats:
    records = list(records)

    sentiment = Counter(_sentiment(r) for r in records)
    status = Counter(_label(r.status or "unknown") for r in records)
    appointments = Counter(r.appointment_status.value for r in records)

    per_day = Counter(
        r.started_at.astimezone(timezone.utc).date() for r in records if r.started_at
    )
    recent = sorted(per_day)[-TREND_DAYS:]

    return CallStats(
        total_calls=len(records),
        sentiment=_buckets(sentiment),
        call_status=_buckets(status),
        appointment_status=_buckets(appointments),
        trend=[TrendPoint(day=d, calls=per_day[d]) for d in recent],
        average_duration_seconds=_average_duration(records),
        completion_rate=_completion_rate(records),
    )


def _appointment_day(record: CallRecord) -> Optional[date]:
    if not record.appointment_date:
        return None
    try:
        return date.fromisoformat(record.appointment_date[:10])
    except ValueError:
        return None


def todays_appointments(
    records: Iterable[CallRecord],
    today: Optional[date] = None,
) -> list[CallRecord]:
    """Records whose appointment falls on ``today``, earliest time first."""
    today = today or datetime.now(timezone.utc).date()
    matches = [r for r in records if _appointment_day(r) == today]
    return sorted(matches, key=lambda r: r.appointment_time or "")


def calendar_events(records: Iterable[CallRecord]) -> list[CalendarEvent]:
    """One event per record carrying an appointment date."""
    events: list[CalendarEvent] = []
    for r in records:
        if not r.appointment_date:
            continue
        status = r.appointment_status
        if status is AppointmentStatus.UNSET:
            status = AppointmentStatus.SCHEDULED
        events.append(CalendarEvent(
            id=r.overlay_row_id or r.call_id,
            call_id=r.call_id,
            title=f"Call {r.call_id[:8]}",
            date=r.appointment_date,
            time=r.appointment_time or "00:00",
            status=status,
        ))
    return sorted(events, key=lambda e: (e.date, e.time))
