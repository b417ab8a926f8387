"""
资源最后已知位置缓存

Redis 键: {kind}:location:{id}，TTL 默认300秒。
Redis 不可用时退化为本地内存缓存，按注入时钟执行同样的TTL；
过期即视为位置未知(None)，不会当作原地不动。
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel
from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.core.clock import Clock, ensure_aware
from src.domains.responders.schemas import ResponderKind

logger = logging.getLogger(__name__)


class CachedLocation(BaseModel):
    latitude: float
    longitude: float
    updated_at: datetime
    heading: Optional[float] = None
    speed_kmh: Optional[float] = None


def location_key(kind: ResponderKind, responder_id: str) -> str:
    return f"{kind.value}:location:{responder_id}"


class LocationCache:

    def __init__(self, redis: Optional[Redis], clock: Clock, ttl_seconds: int = 300) -> None:
        self._redis = redis
        self._clock = clock
        self._ttl = ttl_seconds
        self._local: dict[str, CachedLocation] = {}

    async def set(
        self,
        kind: ResponderKind,
        responder_id: str,
        latitude: float,
        longitude: float,
        heading: Optional[float] = None,
        speed_kmh: Optional[float] = None,
    ) -> CachedLocation:
        entry = CachedLocation(
            latitude=latitude,
            longitude=longitude,
            updated_at=self._clock.now(),
            heading=heading,
            speed_kmh=speed_kmh,
        )
        key = location_key(kind, responder_id)
        if self._redis is not None:
            try:
                await self._redis.set(key, entry.model_dump_json(), ex=self._ttl)
                return entry
            except RedisError as e:
                logger.warning(f"位置写入Redis失败，使用本地缓存: {key}, {e}")
        self._local[key] = entry
        return entry

    async def get(self, kind: ResponderKind, responder_id: str) -> Optional[CachedLocation]:
        key = location_key(kind, responder_id)
        if self._redis is not None:
            try:
                raw = await self._redis.get(key)
                if raw is not None:
                    return CachedLocation.model_validate(json.loads(raw))
                return self._get_local(key)
            except RedisError as e:
                logger.warning(f"位置读取Redis失败，使用本地缓存: {key}, {e}")
        return self._get_local(key)

    def _get_local(self, key: str) -> Optional[CachedLocation]:
        entry = self._local.get(key)
        if entry is None:
            return None
        if self._clock.now() - ensure_aware(entry.updated_at) > timedelta(seconds=self._ttl):
            del self._local[key]
            return None
        return entry
