"""
Redis caching for equipment availability.

CACHING STRATEGY
================

What we cache:
  - The reserved-slot listing of one equipment unit (JSON-serialized)
  - Cache key pattern: "availability:{equipment_id}:{start}:{end}"

Why:
  - Availability is read on every equipment page view and before every
    booking attempt; it changes only when a reservation starts or stops
    holding the calendar

Invalidation strategy:
  - Any calendar-affecting change (booking confirmed/cancelled/edited, group
    created/cancelled/confirmed) deletes every "availability:{equipment_id}:*"
    key for that equipment
  - TTL-based expiry as safety net (AVAILABILITY_CACHE_TTL)

The booking path itself never reads this cache: conflict checks always go to
the database.
"""

import json
from datetime import datetime
from typing import Optional

from agripool.core.config import get_settings
from agripool.core.logging import get_logger
from agripool.core.metrics import record_cache_operation
from agripool.infrastructure.redis_client import get_redis

logger = get_logger(__name__)
settings = get_settings()


def _make_availability_key(equipment_id: int, start: Optional[datetime], end: Optional[datetime]) -> str:
    start_part = start.isoformat() if start else "-"
    end_part = end.isoformat() if end else "-"
    return f"availability:{equipment_id}:{start_part}:{end_part}"


async def get_cached_availability(
    equipment_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Optional[dict]:
    """Retrieve a cached availability response."""
    client = await get_redis()
    if not client:
        return None

    key = _make_availability_key(equipment_id, start, end)
    try:
        data = await client.get(key)
        if data:
            record_cache_operation("get", hit=True)
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        record_cache_operation("get", hit=False)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_availability(
    equipment_id: int,
    start: Optional[datetime],
    end: Optional[datetime],
    data: dict,
) -> None:
    """Cache an availability response with TTL."""
    client = await get_redis()
    if not client:
        return

    key = _make_availability_key(equipment_id, start, end)
    try:
        await client.setex(key, settings.AVAILABILITY_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.AVAILABILITY_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_availability_cache(equipment_id: int) -> None:
    """Drop every cached window for one equipment unit."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"availability:{equipment_id}:*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", equipment_id=equipment_id, keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", equipment_id=equipment_id, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
