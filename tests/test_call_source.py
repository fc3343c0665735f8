import json

import httpx
import pytest

from calldesk.services.call_source import CallSourceClient, CallSourceError
from tests.fakes import AGENT_ID, make_settings


def _client(handler, **overrides) -> CallSourceClient:
    settings = make_settings(call_source_api_key="provider-key", **overrides)
    return CallSourceClient(settings=settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_parses_provider_calls():
    raw = [
        {
            "call_id": "c1",
            "agent_id": AGENT_ID,
            "call_status": "ended",
            "start_timestamp": 1709287200000,
            "end_timestamp": 1709287260000,
            "transcript": "Agent: hello",
            "recording_url": "https://r/c1.mp3",
            "call_analysis": {"user_sentiment": "Positive"},
        }
    ]
    client = _client(lambda r: httpx.Response(200, json=raw))

    [record] = await client.fetch_calls(AGENT_ID)

    assert record.call_id == "c1"
    assert record.status == "ended"
    assert record.started_at.isoformat() == "2024-03-01T10:00:00+00:00"
    assert (record.ended_at - record.started_at).total_seconds() == 60
    assert record.analysis == {"user_sentiment": "Positive"}
    assert record.processed is False


@pytest.mark.asyncio
async def test_request_carries_agent_filter_limit_and_key():
    seen: list[httpx.Request] = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[])

    client = _client(handler, call_source_limit=25)
    await client.fetch_calls(AGENT_ID)

    [request] = seen
    assert request.method == "POST"
    assert request.headers["Authorization"] == "Bearer provider-key"
    assert json.loads(request.content) == {"filter_criteria": {"agent_id": [AGENT_ID]}, "limit": 25}


@pytest.mark.asyncio
async def test_non_success_status_raises_with_code():
    client = _client(lambda r: httpx.Response(401, json={"error": "unauthorized"}))

    with pytest.raises(CallSourceError) as exc_info:
        await client.fetch_calls(AGENT_ID)

    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_transport_failure_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CallSourceError) as exc_info:
        await _client(handler).fetch_calls(AGENT_ID)

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_non_list_payload_raises():
    client = _client(lambda r: httpx.Response(200, json={"calls": []}))

    with pytest.raises(CallSourceError):
        await client.fetch_calls(AGENT_ID)


@pytest.mark.asyncio
async def test_malformed_entries_are_skipped():
    raw = [
        {"call_id": "good", "start_timestamp": 1709287200},
        {"transcript": "no id here"},
        {"call_id": "bad-ts", "start_timestamp": "not a date"},
    ]
    client = _client(lambda r: httpx.Response(200, json=raw))

    records = await client.fetch_calls(AGENT_ID)

    assert [r.call_id for r in records] == ["good"]
    assert records[0].agent_id == AGENT_ID
    assert records[0].started_at.year == 2024
