"""
Post-commit notification dispatch.

Services collect Notifications in an Outbox while they work and hand it over
only after their transaction committed and their locks are released. A failing
sink is logged and counted; it never undoes a committed transition.
"""

from typing import Any, Iterator

from agripool.core.logging import get_logger
from agripool.core.metrics import notification_failures
from agripool.services.interfaces.notification import Notification, NotificationSink

logger = get_logger(__name__)


class Outbox:
    """Notifications waiting for their transaction to commit."""

    def __init__(self):
        self._pending: list[Notification] = []

    def add(self, user_id: int, event: str, **payload: Any) -> None:
        self._pending.append(Notification(user_id=user_id, event=event, payload=payload))

    def add_many(self, user_ids, event: str, **payload: Any) -> None:
        seen = set()
        for user_id in user_ids:
            if user_id in seen:
                continue
            seen.add(user_id)
            self.add(user_id, event, **payload)

    def clear(self) -> None:
        self._pending.clear()

    def __iter__(self) -> Iterator[Notification]:
        return iter(list(self._pending))

    def __len__(self) -> int:
        return len(self._pending)


async def dispatch_notifications(sink: NotificationSink, outbox: Outbox) -> int:
    """Deliver every pending notification. Returns how many were delivered."""
    delivered = 0
    for notification in outbox:
        try:
            await sink.notify(notification.user_id, notification.event, notification.payload)
            delivered += 1
        except Exception as e:
            notification_failures.inc()
            logger.error(
                "notification_failed",
                user_id=notification.user_id,
                notification_event=notification.event,
                error=str(e),
            )
    outbox.clear()
    return delivered
