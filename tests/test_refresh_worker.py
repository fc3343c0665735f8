import asyncio

import pytest

from calldesk.services.call_source import CallSourceError
from calldesk.services.reconciliation_session import SessionRegistry
from calldesk.workers.refresh_worker import RefreshWorker
from tests.fakes import FakeCallSource, make_record


@pytest.fixture
def sources():
    return {
        "agent-a": FakeCallSource([make_record("a1", transcript=None)]),
        "agent-b": FakeCallSource([make_record("b1", transcript=None)]),
    }


@pytest.fixture
def registry(make_session, sources):
    return SessionRegistry(factory=lambda agent_id: make_session(sources[agent_id]))


@pytest.mark.asyncio
async def test_run_once_refreshes_every_agent(registry, sources):
    worker = RefreshWorker(list(sources), registry=registry, poll_interval=0.01)

    assert await worker.run_once() == 2
    assert [r.call_id for r in registry.get("agent-b").records] == ["b1"]


@pytest.mark.asyncio
async def test_failing_agent_does_not_stop_the_others(registry, sources):
    sources["agent-a"].error = CallSourceError("down", status_code=503)
    worker = RefreshWorker(list(sources), registry=registry, poll_interval=0.01)

    assert await worker.run_once() == 1
    assert sources["agent-b"].calls == 1
    assert registry.get("agent-a").records == []


@pytest.mark.asyncio
async def test_throttled_passes_are_not_counted(registry, sources):
    worker = RefreshWorker(list(sources), registry=registry, poll_interval=0.01)

    await worker.run_once()

    assert await worker.run_once() == 0


@pytest.mark.asyncio
async def test_stop_ends_the_loop(registry, sources):
    worker = RefreshWorker(list(sources), registry=registry, poll_interval=60)

    task = asyncio.create_task(worker.start())
    await asyncio.sleep(0.01)
    await worker.stop()
    await asyncio.wait_for(task, timeout=1)

    assert sources["agent-a"].calls == 1
    assert "agent-a" not in registry
