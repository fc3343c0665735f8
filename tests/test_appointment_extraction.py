import json
from datetime import datetime, timezone

import httpx
import pytest

from calldesk.config import get_settings
from calldesk.services.appointment_extraction import OPENAI_CHAT_URL, extract_appointment
from tests.fakes import SCHEDULING_TRANSCRIPT


def _completion(content) -> dict:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it answered."""

    def __init__(self, responder):
        self.requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return responder(request)

        super().__init__(handler)


@pytest.mark.asyncio
async def test_short_transcript_skips_remote_call():
    transport = RecordingTransport(lambda r: httpx.Response(200, json=_completion({})))

    result = await extract_appointment("Hi, bye.", transport=transport)

    assert transport.requests == []
    assert result.confidence == 0
    assert not result.has_appointment_data


@pytest.mark.asyncio
async def test_maps_camel_case_answer_and_sends_reference_date():
    answer = {
        "appointmentDate": "2024-03-02",
        "appointmentTime": "15:00",
        "clientName": "Sam Lee",
        "clientAddress": None,
        "clientEmail": "sam@x.com",
        "confidence": 85,
        "suggestedResponse": "See you tomorrow at 3pm.",
    }
    transport = RecordingTransport(lambda r: httpx.Response(200, json=_completion(answer)))

    result = await extract_appointment(
        SCHEDULING_TRANSCRIPT,
        datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc),
        transport=transport,
    )

    assert result.appointment_date == "2024-03-02"
    assert result.appointment_time == "15:00"
    assert result.client_name == "Sam Lee"
    assert result.client_address is None
    assert result.client_email == "sam@x.com"
    assert result.confidence == 85
    assert result.suggested_response == "See you tomorrow at 3pm."

    [request] = transport.requests
    assert str(request.url) == OPENAI_CHAT_URL
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["response_format"] == {"type": "json_object"}
    assert "2024-03-01" in body["messages"][0]["content"]
    assert SCHEDULING_TRANSCRIPT in body["messages"][1]["content"]


@pytest.mark.asyncio
async def test_server_error_returns_empty_result():
    transport = RecordingTransport(lambda r: httpx.Response(500, json={"error": "boom"}))

    result = await extract_appointment(SCHEDULING_TRANSCRIPT, transport=transport)

    assert len(transport.requests) == 1
    assert result == result.empty()


@pytest.mark.asyncio
async def test_non_json_content_returns_empty_result():
    transport = RecordingTransport(lambda r: httpx.Response(200, json=_completion("not json at all")))

    result = await extract_appointment(SCHEDULING_TRANSCRIPT, transport=transport)

    assert result.confidence == 0
    assert result.appointment_date is None


@pytest.mark.asyncio
async def test_json_array_content_returns_empty_result():
    transport = RecordingTransport(lambda r: httpx.Response(200, json=_completion("[1, 2]")))

    result = await extract_appointment(SCHEDULING_TRANSCRIPT, transport=transport)

    assert result == result.empty()


@pytest.mark.asyncio
async def test_missing_choices_returns_empty_result():
    transport = RecordingTransport(lambda r: httpx.Response(200, json={"choices": []}))

    result = await extract_appointment(SCHEDULING_TRANSCRIPT, transport=transport)

    assert result == result.empty()


@pytest.mark.asyncio
async def test_missing_api_key_makes_no_request(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "")
    get_settings.cache_clear()
    transport = RecordingTransport(lambda r: httpx.Response(200, json=_completion({})))

    result = await extract_appointment(SCHEDULING_TRANSCRIPT, transport=transport)

    assert transport.requests == []
    assert result == result.empty()


@pytest.mark.asyncio
async def test_null_strings_and_out_of_range_confidence_are_normalized():
    answer = {
        "appointmentDate": "null",
        "appointmentTime": "  ",
        "clientEmail": "N/A",
        "confidence": 140,
    }
    transport = RecordingTransport(lambda r: httpx.Response(200, json=_completion(answer)))

    result = await extract_appointment(SCHEDULING_TRANSCRIPT, transport=transport)

    assert result.appointment_date is None
    assert result.appointment_time is None
    assert result.client_email is None
    assert result.confidence == 100
    assert not result.has_appointment_data
