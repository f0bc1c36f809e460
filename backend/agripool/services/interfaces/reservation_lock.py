"""
Reservation lock strategy interface.
Serializes read-check-write sequences on one resource (an equipment calendar
or a group booking's membership).
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator


def equipment_key(equipment_id: int) -> str:
    return f"equipment:{equipment_id}"


def group_key(group_booking_id: int) -> str:
    return f"group_booking:{group_booking_id}"


class ReservationLock(ABC):
    """
    Interface for per-resource mutual exclusion.

    Implementations:
    - LocalReservationLock: asyncio.Lock per key, single process
    - RedisReservationLock: Redis lock shared by every worker process

    The database version checks stay in place under either strategy; the
    lock only keeps contending requests from burning their retries.
    """

    @abstractmethod
    def hold(self, key: str):
        """
        Async context manager holding the lock for `key`.

        Args:
            key: Resource key, see equipment_key / group_key
        """
        pass


class LocalReservationLock(ReservationLock):
    """
    In-process locks, one per key.
    Locks are dropped once no coroutine holds or waits on them.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._lock_for(key)
        async with lock:
            yield
