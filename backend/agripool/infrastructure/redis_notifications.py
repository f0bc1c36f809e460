"""
Redis notification queue.
Events are pushed onto a list; a separate worker pops and delivers them, so
delivery problems never reach the booking transaction.
"""

import json
from datetime import datetime, timezone
from typing import Any

from agripool.core.config import get_settings
from agripool.core.logging import get_logger
from agripool.infrastructure.redis_client import get_redis
from agripool.services.interfaces.notification import NotificationSink

logger = get_logger(__name__)
settings = get_settings()


class RedisNotificationSink(NotificationSink):
    def __init__(self, queue_key: str = None):
        self.queue_key = queue_key or settings.NOTIFICATION_QUEUE_KEY

    async def notify(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        client = await get_redis()
        if client is None:
            raise ConnectionError("Redis unavailable for notification queue")

        message = json.dumps(
            {
                "user_id": user_id,
                "event": event,
                "payload": payload,
                "emitted_at": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
        await client.lpush(self.queue_key, message)
        logger.debug("notification_queued", user_id=user_id, notification_event=event, queue=self.queue_key)
