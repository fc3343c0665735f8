from datetime import date, datetime, timedelta, timezone

from calldesk.schemas.call import AppointmentStatus
from calldesk.services.call_analytics import build_stats, calendar_events, todays_appointments
from tests.fakes import make_record


def _by_name(buckets) -> dict[str, int]:
    return {b.name: b.value for b in buckets}


def test_stats_breakdowns():
    records = [
        make_record("c1", analysis={"user_sentiment": "POSITIVE"}, appointment_status="scheduled"),
        make_record("c2", analysis={"user_sentiment": "negative"}, status="error"),
        make_record("c3", status=None),
    ]

    stats = build_stats(records)

    assert stats.total_calls == 3
    assert _by_name(stats.sentiment) == {"Positive": 1, "Negative": 1, "Unknown": 1}
    assert _by_name(stats.call_status) == {"Ended": 1, "Error": 1, "Unknown": 1}
    assert _by_name(stats.appointment_status) == {"scheduled": 1, "unset": 2}


def test_trend_keeps_last_seven_days():
    start = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    records = [make_record(f"c{i}", started_at=start + timedelta(days=i)) for i in range(9)]
    records.append(make_record("extra", started_at=start + timedelta(days=8, hours=2)))
    records.append(make_record("undated", started_at=None))

    trend = build_stats(records).trend

    assert [p.day for p in trend] == [date(2024, 3, 3) + timedelta(days=i) for i in range(7)]
    assert trend[-1].calls == 2


def test_empty_stats():
    stats = build_stats([])
    assert stats.total_calls == 0
    assert stats.trend == []


def test_todays_appointments_sorted_by_time():
    today = date(2024, 3, 2)
    records = [
        make_record("late", appointment_date="2024-03-02", appointment_time="16:00"),
        make_record("early", appointment_date="2024-03-02", appointment_time="09:15"),
        make_record("tomorrow", appointment_date="2024-03-03", appointment_time="08:00"),
        make_record("garbled", appointment_date="next week"),
        make_record("none"),
    ]

    result = todays_appointments(records, today=today)

    assert [r.call_id for r in result] == ["early", "late"]


def test_calendar_events():
    records = [
        make_record("abcdef123456", appointment_date="2024-03-05", overlay_row_id="row-1",
                    appointment_status="in-process"),
        make_record("c2", appointment_date="2024-03-02", appointment_time="10:00"),
        make_record("c3"),
    ]

    events = calendar_events(records)

    assert [e.call_id for e in events] == ["c2", "abcdef123456"]
    first, second = events
    assert first.id == "c2"
    assert first.status is AppointmentStatus.SCHEDULED
    assert second.id == "row-1"
    assert second.title == "Call abcdef12"
    assert second.time == "00:00"
    assert second.status is AppointmentStatus.IN_PROCESS


def test_status_label_keeps_inner_case():
    stats = build_stats([make_record("c1", status="in_Progress"), make_record("c2", status=None)])

    assert _by_name(stats.call_status) == {"In_Progress": 1, "Unknown": 1}


def test_average_duration_over_calls_with_both_timestamps():
    start = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    records = [
        make_record("c1", started_at=start, ended_at=start + timedelta(seconds=60)),
        make_record("c2", started_at=start, ended_at=start + timedelta(seconds=150)),
        make_record("open", started_at=start),
    ]

    assert build_stats(records).average_duration_seconds == 105.0


def test_average_duration_absent_without_ended_calls():
    assert build_stats([make_record("c1")]).average_duration_seconds is None


def test_completion_rate_rounds_half_up():
    records = [make_record("c0", status="completed")]
    records += [make_record(f"c{i}", status="ended") for i in range(1, 8)]

    assert build_stats(records).completion_rate == 13


def test_completion_rate_absent_without_calls():
    assert build_stats([]).completion_rate is None
