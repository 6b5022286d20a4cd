"""Advisory lock so two discovery runs for the same region don't overlap."""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from workhaven.config import settings
from workhaven.models.spots import Coordinate

logger = logging.getLogger(__name__)


def region_key(center: Coordinate, radius_meters: float) -> str:
    """Quantize a search region (0.1 degree grid, whole kilometers) into a lock key."""
    lat = round(center.latitude, 1)
    lon = round(center.longitude, 1)
    radius_km = int(round(radius_meters / 1000.0))
    return f"workhaven:discovery:{lat:.1f}:{lon:.1f}:{radius_km}"


class RegionLock:
    """No-op lock used when cross-process locking is disabled."""

    @asynccontextmanager
    async def hold(self, center: Coordinate, radius_meters: float) -> AsyncIterator[bool]:
        yield False


class RedisRegionLock(RegionLock):
    """Redis lock keyed by region.

    If Redis is unreachable or the lock can't be taken in time the run goes
    ahead unlocked; the spot store still serializes its own writes.
    """

    def __init__(self, client: Optional[redis.Redis] = None, timeout: Optional[float] = None):
        self.client = client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True,
        )
        self.timeout = timeout if timeout is not None else settings.discovery_lock_timeout

    @asynccontextmanager
    async def hold(self, center: Coordinate, radius_meters: float) -> AsyncIterator[bool]:
        key = region_key(center, radius_meters)
        lock = self.client.lock(key, timeout=self.timeout, blocking_timeout=self.timeout)
        acquired = False
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            logger.warning(f"Redis lock error for {key}: {exc}")
        if not acquired:
            logger.warning(f"Proceeding without region lock {key}")
        try:
            yield acquired
        finally:
            if acquired:
                try:
                    await lock.release()
                except (LockError, RedisError) as exc:
                    logger.warning(f"Failed to release region lock {key}: {exc}")


def build_region_lock() -> RegionLock:
    if settings.discovery_lock_enabled:
        return RedisRegionLock()
    return RegionLock()
