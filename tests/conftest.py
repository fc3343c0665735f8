from typing import Any

import pytest

from calldesk.config import get_settings
from calldesk.services.overlay_store import OverlayStore
from calldesk.services.reconciliation_session import ReconciliationSession
from tests.fakes import AGENT_ID, FakeCallSource, FakeClock, FakeExtractor, FakeSupabase, make_settings


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("CALL_SOURCE_API_KEY", "provider-key")
    monkeypatch.setenv("SUPABASE_URL", "")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def store(fake_db) -> OverlayStore:
    return OverlayStore(client=fake_db, table="call_logs")


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_session(store, extractor, clock):
    def _make(source: FakeCallSource, **settings_overrides: Any) -> ReconciliationSession:
        return ReconciliationSession(
            agent_id=AGENT_ID,
            source=source,
            store=store,
            extractor=extractor,
            settings=make_settings(**settings_overrides),
            clock=clock,
        )

    return _make
