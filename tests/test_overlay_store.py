import pytest

from calldesk.schemas.call import AppointmentStatus
from calldesk.schemas.overlay import OverlayUpdate
from calldesk.services.overlay_store import OverlayStoreError, StaleWriteError
from tests.fakes import AGENT_ID


def _on_op(fake_db, op, action):
    """Run ``action`` right before the next query with operation ``op`` executes."""

    def hook(query):
        if query.op != op:
            fake_db.before_execute = hook
            return
        action(query)

    fake_db.before_execute = hook


@pytest.mark.asyncio
async def test_first_write_inserts_version_one(store, fake_db):
    row = await store.upsert(
        OverlayUpdate(call_id="c1", agent_id=AGENT_ID, appointment_status="in-process", appointment_date="2024-03-02")
    )

    assert row.version == 1
    assert row.appointment_status is AppointmentStatus.IN_PROCESS
    assert len(fake_db.rows()) == 1
    assert fake_db.rows()[0]["appointment_status"] == "in-process"


@pytest.mark.asyncio
async def test_repeated_upserts_keep_one_row_and_bump_version(store, fake_db):
    await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="first"))
    await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="second"))
    row = await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="third"))

    assert row.version == 3
    assert row.notes == "third"
    assert len(fake_db.rows()) == 1


@pytest.mark.asyncio
async def test_fetch_by_agent_filters_on_owner(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID)
    fake_db.seed(call_id="c2", agent_id=AGENT_ID)
    fake_db.seed(call_id="c1", agent_id="other-agent")

    rows = await store.fetch_by_agent(AGENT_ID)

    assert sorted(r.call_id for r in rows) == ["c1", "c2"]
    assert {r.agent_id for r in rows} == {AGENT_ID}


@pytest.mark.asyncio
async def test_get_returns_none_for_missing_row(store):
    assert await store.get("nope", AGENT_ID) is None


@pytest.mark.asyncio
async def test_partial_update_leaves_other_fields(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID, appointment_date="2024-03-02", notes="keep me")

    row = await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, appointment_time="15:00"))

    assert row.appointment_date == "2024-03-02"
    assert row.appointment_time == "15:00"
    assert row.notes == "keep me"


@pytest.mark.asyncio
async def test_explicit_none_clears_field(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID, appointment_date="2024-03-02")

    row = await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, appointment_date=None))

    assert row.appointment_date is None


@pytest.mark.asyncio
async def test_write_based_on_older_version_is_rejected(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID, version=3, notes="newer")

    with pytest.raises(StaleWriteError) as exc_info:
        await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="older"), expected_version=2)

    assert exc_info.value.stored_version == 3
    assert fake_db.rows()[0]["notes"] == "newer"


@pytest.mark.asyncio
async def test_write_that_saw_no_row_is_rejected_once_a_row_exists(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID, appointment_status="rejected")

    with pytest.raises(StaleWriteError):
        await store.upsert(
            OverlayUpdate(call_id="c1", agent_id=AGENT_ID, appointment_status="in-process"),
            expected_version=0,
        )

    assert fake_db.rows()[0]["appointment_status"] == "rejected"


@pytest.mark.asyncio
async def test_matching_version_is_accepted(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID, version=2)

    row = await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="ok"), expected_version=2)

    assert row.version == 3


@pytest.mark.asyncio
async def test_no_expected_version_means_last_write_wins(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID, version=7)

    row = await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="mine"))

    assert row.version == 8
    assert row.notes == "mine"


@pytest.mark.asyncio
async def test_concurrent_bump_between_read_and_update_is_stale(store, fake_db):
    seeded = fake_db.seed(call_id="c1", agent_id=AGENT_ID, version=1)

    def bump(_query):
        seeded["version"] = 2
        seeded["notes"] = "other writer"

    _on_op(fake_db, "update", bump)

    with pytest.raises(StaleWriteError) as exc_info:
        await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="mine"), expected_version=1)

    assert exc_info.value.stored_version == 2
    assert fake_db.rows()[0]["notes"] == "other writer"


@pytest.mark.asyncio
async def test_lost_insert_race_falls_back_to_update(store, fake_db):
    def other_insert(_query):
        fake_db.seed(call_id="c1", agent_id=AGENT_ID, notes="winner")

    _on_op(fake_db, "insert", other_insert)

    row = await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, appointment_date="2024-03-02"))

    assert len(fake_db.rows()) == 1
    assert row.version == 2
    assert row.notes == "winner"
    assert row.appointment_date == "2024-03-02"


@pytest.mark.asyncio
async def test_lost_insert_race_with_expected_zero_is_stale(store, fake_db):
    _on_op(fake_db, "insert", lambda _q: fake_db.seed(call_id="c1", agent_id=AGENT_ID))

    with pytest.raises(StaleWriteError):
        await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="x"), expected_version=0)


@pytest.mark.asyncio
async def test_backend_failures_are_wrapped(store, fake_db):
    fake_db.fail_ops.add("select")

    with pytest.raises(OverlayStoreError) as exc_info:
        await store.fetch_by_agent(AGENT_ID)

    assert not isinstance(exc_info.value, StaleWriteError)


@pytest.mark.asyncio
async def test_update_failure_is_wrapped_with_call_id(store, fake_db):
    fake_db.seed(call_id="c1", agent_id=AGENT_ID)
    fake_db.fail_ops.add("update")

    with pytest.raises(OverlayStoreError) as exc_info:
        await store.upsert(OverlayUpdate(call_id="c1", agent_id=AGENT_ID, notes="x"))

    assert exc_info.value.call_id == "c1"
