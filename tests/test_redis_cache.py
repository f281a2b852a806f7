import asyncio

from redis.exceptions import ConnectionError as RedisConnectionError

from utils.redis_cache import MemoryCache, RedisCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("connection refused")

    async def delete(self, key):
        raise RedisConnectionError("connection refused")

    async def ping(self):
        raise RedisConnectionError("connection refused")


class DictRedis:
    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True


def test_memory_cache_expires_entries():
    clock = FakeClock()
    cache = MemoryCache(clock=clock)

    async def scenario():
        await cache.set("job", {"status": "running"})
        await cache.set("short", 1, ttl=10)
        clock.now += 9
        assert await cache.get("short") == 1
        clock.now += 1
        assert await cache.get("short") is None
        return await cache.get("job")

    assert asyncio.run(scenario()) == {"status": "running"}
    assert len(cache) == 1


def test_memory_cache_items_skip_expired():
    clock = FakeClock()
    cache = MemoryCache(default_ttl=5, clock=clock)

    async def scenario():
        await cache.set("a", 1)
        clock.now += 3
        await cache.set("b", 2)
        clock.now += 3
        return await cache.items()

    assert asyncio.run(scenario()) == [("b", 2)]


def test_redis_cache_round_trips_json():
    client = DictRedis()
    cache = RedisCache(client=client)

    async def scenario():
        assert await cache.set("recipe:1", {"name": "Soup", "calories": 90.0}, ttl=60)
        value = await cache.get("recipe:1")
        await cache.delete("recipe:1")
        missing = await cache.get("recipe:1")
        await cache.close()
        return value, missing

    value, missing = asyncio.run(scenario())

    assert value == {"name": "Soup", "calories": 90.0}
    assert missing is None
    assert client.expiry["recipe:1"] == 60
    assert client.closed


def test_redis_errors_are_treated_as_misses():
    cache = RedisCache(client=BrokenRedis())

    async def scenario():
        return (
            await cache.get("recipe:1"),
            await cache.set("recipe:1", {"a": 1}),
            await cache.delete("recipe:1"),
            await cache.ping(),
        )

    assert asyncio.run(scenario()) == (None, False, False, False)


def test_unreadable_entry_is_a_miss():
    client = DictRedis()
    client.data["recipe:1"] = "{not json"
    cache = RedisCache(client=client)

    assert asyncio.run(cache.get("recipe:1")) is None
