"""
Redis-backed reservation locks, shared by all worker processes.

If Redis is unreachable the lock falls back to the in-process strategy: the
version checks in the database still reject conflicting writes, so this only
costs extra retries under contention.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from agripool.core.config import get_settings
from agripool.core.errors import ConcurrentModification
from agripool.core.logging import get_logger
from agripool.infrastructure.redis_client import get_redis
from agripool.services.interfaces.reservation_lock import LocalReservationLock, ReservationLock

logger = get_logger(__name__)
settings = get_settings()


class RedisReservationLock(ReservationLock):
    """
    Strategy: one Redis lock per resource key with an expiry, so a crashed
    worker cannot wedge a calendar forever.

    Use when:
    - More than one API process serves bookings
    """

    def __init__(self, timeout: float = None):
        self.timeout = timeout or settings.LOCK_TIMEOUT_SECONDS
        self._fallback = LocalReservationLock()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        client = await get_redis()
        if client is None:
            logger.warning("reservation_lock_degraded", key=key, reason="redis_unavailable")
            async with self._fallback.hold(key):
                yield
            return

        lock = client.lock(
            f"lock:{key}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning("reservation_lock_timeout", key=key, timeout=self.timeout)
            raise ConcurrentModification()
        try:
            yield
        finally:
            await lock.release()
