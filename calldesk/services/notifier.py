"""
User-facing notifications.

The dashboard shows toasts for new calls, detected appointments and
failures. The pipeline pushes them here; the API drains them. Each
agent session owns one bounded buffer, so old notifications fall off
instead of piling up when nobody is polling.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from calldesk.logging_config import get_logger

logger = get_logger(__name__)


class NotificationLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationKind(str, Enum):
    NEW_CALLS = "new_calls"
    APPOINTMENT_DETECTED = "appointment_detected"
    APPOINTMENT_UPDATED = "appointment_updated"
    PERSISTENCE_FAILED = "persistence_failed"
    STALE_WRITE = "stale_write"
    REFRESH_FAILED = "refresh_failed"


class Notification(BaseModel):
    kind: NotificationKind
    level: NotificationLevel
    message: str
    agent_id: str
    call_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Bounded, drain-on-read notification buffer for one agent."""

    def __init__(self, agent_id: str, maxlen: int = 100) -> None:
        self.agent_id = agent_id
        self._buffer: deque[Notification] = deque(maxlen=maxlen)

    def notify(
        self,
        kind: NotificationKind,
        message: str,
        level: NotificationLevel = NotificationLevel.INFO,
        call_id: str | None = None,
    ) -> Notification:
        notification = Notification(
            kind=kind,
            level=level,
            message=message,
            agent_id=self.agent_id,
            call_id=call_id,
        )
        self._buffer.append(notification)
        logger.info(
            "notification_emitted",
            agent_id=self.agent_id,
            kind=kind.value,
            level=level.value,
            call_id=call_id,
        )
        return notification

    def drain(self) -> list[Notification]:
        """Return and clear every buffered notification, oldest first."""
        items = list(self._buffer)
        self._buffer.clear()
        return items

    def peek(self) -> list[Notification]:
        return list(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)
