"""
Appointment Extraction Service.

Sends a call transcript to the LLM and maps its JSON answer onto an
``ExtractionResult`` (appointment date/time, contact details, confidence,
suggested confirmation). Exactly one remote call per transcript, no
retries. Every failure collapses into the empty result so callers can
treat extraction as total.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from calldesk.config import get_settings
from calldesk.logging_config import get_logger
from calldesk.schemas.extraction import ExtractionResult

logger = get_logger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"


# {reference_date} is filled per call so relative dates ("tomorrow",
# "next Monday") resolve against the day the call happened.
EXTRACTION_PROMPT = """You extract appointment information and contact details from phone call transcripts.
Analyze the transcript carefully and find ANY mention of scheduling an appointment and any contact information.

The reference date for this call is {reference_date}.
Resolve relative dates such as "tomorrow", "next Monday" or "in two days" against the reference date.

Email addresses may appear in many forms:
- "my email is john@example.com" or "reach me at john.doe@company.com"
- spelled out, e.g. "john at gmail dot com"
- with no lead-in at all, e.g. "yeah it's sarah.johnson@outlook.com"

Extract:
1. appointmentDate: YYYY-MM-DD, or null
2. appointmentTime: HH:MM in 24-hour time, or null
3. clientName: full name, or null
4. clientAddress: street address / city / state, or null if missing or incomplete
5. clientEmail: any email address mentioned, or null
6. confidence: integer 0-100, how confident you are in the extraction
7. suggestedResponse: a short confirmation the agent could use, or null

If several dates, times or emails are mentioned, choose the final agreed appointment and the primary contact.

Return ONLY a JSON object:
{
  "appointmentDate": "YYYY-MM-DD or null",
  "appointmentTime": "HH:MM or null",
  "clientName": "string or null",
  "clientAddress": "string or null",
  "clientEmail": "string or null",
  "confidence": 0,
  "suggestedResponse": "string or null"
}"""


async def extract_appointment(
    transcript: str,
    reference_date: Optional[datetime] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ExtractionResult:
    """
    Extract appointment and contact details from a transcript.

    Args:
        transcript: Full call transcript.
        reference_date: When the call happened; relative dates are resolved
            against it. Defaults to now (UTC).
        transport: Optional httpx transport (tests inject a mock here).

    Returns:
        ExtractionResult. All-null with confidence 0 when the transcript is
        too short, the API key is missing, or the remote call fails.
    """
    settings = get_settings()
    text = (transcript or "").strip()

    if len(text) < settings.extraction_min_transcript_chars:
        logger.info("extraction_skipped_short_transcript", transcript_length=len(text))
        return ExtractionResult.empty()

    if not settings.openai_api_key:
        logger.error("extraction_missing_api_key")
        return ExtractionResult.empty()

    reference = reference_date or datetime.now(timezone.utc)
    logger.info(
        "extraction_started",
        transcript_length=len(text),
        reference_date=reference.date().isoformat(),
    )

    try:
        raw = await _call_llm_for_extraction(text, reference, transport=transport)
        result = ExtractionResult.model_validate(raw)
    except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError
        logger.error("extraction_llm_error", error=str(e), error_type=type(e).__name__)
        return ExtractionResult.empty()

    logger.info(
        "extraction_complete",
        has_date=result.appointment_date is not None,
        has_time=result.appointment_time is not None,
        has_email=result.client_email is not None,
        confidence=result.confidence,
    )
    return result


async def _call_llm_for_extraction(
    transcript: str,
    reference: datetime,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, Any]:
    """
    Call the chat completions API with a JSON response format and return
    the parsed JSON object from the first choice.
    """
    settings = get_settings()
    prompt = EXTRACTION_PROMPT.replace("{reference_date}", reference.date().isoformat())

    async with httpx.AsyncClient(
        timeout=settings.extraction_timeout_seconds,
        transport=transport,
    ) as client:
        response = await client.post(
            OPENAI_CHAT_URL,
            headers={
                "Authorization": f"Bearer {settings.openai_api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": settings.extraction_model,
                "messages": [
                    {"role": "system", "content": prompt},
                    {
                        "role": "user",
                        "content": (
                            "Extract appointment details and contact information from this "
                            f"transcript and respond with JSON: {transcript}"
                        ),
                    },
                ],
                "response_format": {"type": "json_object"},
                "temperature": 0.1,
            },
        )
        response.raise_for_status()
        data = response.json()

    content = data["choices"][0]["message"]["content"]
    parsed = json.loads(content)
    if not isinstance(parsed, dict):
        raise TypeError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed
