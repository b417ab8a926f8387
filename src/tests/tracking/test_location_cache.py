"""位置缓存: Redis键格式、TTL与Redis故障时的本地退化"""
from __future__ import annotations

import asyncio
import json

from redis.exceptions import ConnectionError as RedisConnectionError

from src.core.clock import FrozenClock
from src.domains.responders.schemas import ResponderKind
from src.domains.tracking.location_cache import LocationCache, location_key


class _FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expiry: dict[str, int] = {}

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.store[key] = value
        self.expiry[key] = ex
        return True

    async def get(self, key: str):
        return self.store.get(key)


class _DownRedis:
    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def get(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


def test_location_key_format() -> None:
    assert location_key(ResponderKind.ambulance, "amb-1") == "ambulance:location:amb-1"
    assert location_key(ResponderKind.volunteer, "vol-9") == "volunteer:location:vol-9"


def test_redis_entry_written_with_ttl() -> None:
    redis = _FakeRedis()
    cache = LocationCache(redis, FrozenClock(), ttl_seconds=300)

    async def scenario():
        await cache.set(ResponderKind.ambulance, "amb-1", 12.97, 77.59, heading=90.0)
        return await cache.get(ResponderKind.ambulance, "amb-1")

    entry = asyncio.run(scenario())

    assert redis.expiry["ambulance:location:amb-1"] == 300
    stored = json.loads(redis.store["ambulance:location:amb-1"])
    assert stored["latitude"] == 12.97
    assert entry.longitude == 77.59
    assert entry.heading == 90.0


def test_local_cache_expires_after_ttl() -> None:
    clock = FrozenClock()
    cache = LocationCache(None, clock, ttl_seconds=300)
    asyncio.run(cache.set(ResponderKind.volunteer, "vol-1", 12.9, 77.6))

    clock.advance(seconds=300)
    assert asyncio.run(cache.get(ResponderKind.volunteer, "vol-1")) is not None

    clock.advance(seconds=1)
    assert asyncio.run(cache.get(ResponderKind.volunteer, "vol-1")) is None


def test_unknown_responder_has_no_location() -> None:
    cache = LocationCache(_FakeRedis(), FrozenClock())
    assert asyncio.run(cache.get(ResponderKind.donor, "nobody")) is None


def test_redis_failure_falls_back_to_local_cache() -> None:
    clock = FrozenClock()
    cache = LocationCache(_DownRedis(), clock)

    asyncio.run(cache.set(ResponderKind.ambulance, "amb-2", 13.0, 77.5))
    entry = asyncio.run(cache.get(ResponderKind.ambulance, "amb-2"))

    assert entry is not None
    assert entry.latitude == 13.0
    assert entry.updated_at == clock.now()
