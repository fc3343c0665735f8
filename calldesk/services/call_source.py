"""
External Call Source Client.

Fetches the raw call list for an agent from the call provider's
``list-calls`` endpoint and turns it into ``CallRecord`` objects.
Read-only; holds no state between calls. A non-2xx answer aborts the
reconciliation pass, so nothing here retries.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from pydantic import ValidationError

from calldesk.config import Settings, get_settings
from calldesk.logging_config import get_logger
from calldesk.schemas.call import CallRecord

logger = get_logger(__name__)


class CallSourceError(Exception):
    """Raised when the provider cannot be reached or answers non-2xx."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CallSourceClient:
    """Thin async client over the provider's list-calls API."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    async def fetch_calls(self, agent_id: str, limit: int | None = None) -> list[CallRecord]:
        """
        Fetch the most recent calls handled by ``agent_id``.

        Raises:
            CallSourceError: on transport failure, non-2xx status or a
                body that is not a JSON array.
        """
        limit = limit or self._settings.call_source_limit
        raw_calls = await self._request(agent_id, limit)

        records: list[CallRecord] = []
        for raw in raw_calls:
            try:
                records.append(CallRecord.from_provider(raw, agent_id))
            except (ValidationError, ValueError, TypeError, AttributeError) as e:
                logger.warning("skipping_malformed_call", agent_id=agent_id, error=str(e))

        logger.info(
            "provider_calls_fetched",
            agent_id=agent_id,
            received=len(raw_calls),
            parsed=len(records),
        )
        return records

    async def _request(self, agent_id: str, limit: int) -> list[dict[str, Any]]:
        payload = {
            "filter_criteria": {"agent_id": [agent_id]},
            "limit": limit,
        }
        headers = {
            "Authorization": f"Bearer {self._settings.call_source_api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.call_source_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self._settings.call_source_url,
                    headers=headers,
                    json=payload,
                )
        except httpx.HTTPError as e:
            logger.error("provider_request_failed", agent_id=agent_id, error=str(e))
            raise CallSourceError(f"Call provider unreachable: {e}") from e

        if not response.is_success:
            logger.error(
                "provider_bad_status",
                agent_id=agent_id,
                status=response.status_code,
                body=response.text[:200],
            )
            raise CallSourceError(
                f"Call provider returned {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CallSourceError("Call provider returned invalid JSON", response.status_code) from e

        if not isinstance(data, list):
            raise CallSourceError("Call provider returned an unexpected payload", response.status_code)

        return data
