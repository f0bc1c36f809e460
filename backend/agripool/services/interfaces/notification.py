"""
Notification sink interface.
The booking engine emits events after a transition commits; delivery is
someone else's job.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from agripool.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    user_id: int
    event: str
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationSink(ABC):
    """
    Fire-and-forget notification delivery.

    Implementations:
    - LogNotificationSink: structured log line per event (development)
    - RedisNotificationSink: pushes onto a Redis list for an independent worker
    """

    @abstractmethod
    async def notify(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        """
        Hand one event to the delivery channel.

        Args:
            user_id: Recipient
            event: Event type, e.g. BOOKING_CONFIRMED
            payload: JSON-serializable event data

        Raises:
            Any exception on delivery failure; callers log and drop it.
        """
        pass


class LogNotificationSink(NotificationSink):
    """Writes each notification to the structured log."""

    async def notify(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        logger.info("notification_emitted", user_id=user_id, notification_event=event, payload=payload)
