import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from spider.store import InMemoryStore, RedisStore, escape_glob
from spider.utils import StoreUnavailable


@pytest.mark.asyncio
async def test_in_memory_lists_follow_redis_ends():
    s = InMemoryStore()
    await s.lpush("q", "a")
    await s.lpush("q", "b")
    await s.rpush("q", "z")
    assert await s.llen("q") == 3
    assert await s.rpop("q") == "z"
    assert await s.rpop("q") == "a"
    assert await s.rpop("q") == "b"
    assert await s.rpop("q") is None
    # empty lists disappear
    assert s.keys() == []


@pytest.mark.asyncio
async def test_in_memory_hashes_sets_counters():
    s = InMemoryStore()
    assert await s.hset("h", 0, "req") == 1
    assert await s.hget("h", "0") == "req"
    assert await s.hincrby("r", "req", 1) == 1
    assert await s.hincrby("r", "req", 1) == 2
    assert await s.hgetall("r") == {"req": "2"}
    assert await s.hdel("h", 0) == 1
    assert await s.hdel("h", 0) == 0
    assert await s.hgetall("h") == {}

    assert await s.sadd("s", "m") == 1
    assert await s.sadd("s", "m") == 0

    assert await s.get("n") is None
    await s.set("n", 3)
    assert await s.get("n") == "3"
    assert await s.incr("n") == 4
    assert await s.decr("n") == 3
    assert await s.incr("fresh") == 1


@pytest.mark.asyncio
async def test_in_memory_delete_prefix_is_literal():
    s = InMemoryStore()
    await s.set("spider.a:total", 1)
    await s.rpush("spider.a:queue", "x")
    await s.hset("spider.a:requesting", 0, "x")
    await s.set("spider.ab:total", 1)
    await s.set("other", 1)

    assert await s.delete_prefix("spider.a:") == 3
    assert s.keys() == ["other", "spider.ab:total"]


def test_escape_glob():
    assert escape_glob("spider.job:") == "spider.job:"
    assert escape_glob("a*b?[c]\\") == "a\\*b\\?\\[c\\]\\\\"


class _FakeRedis:
    def __init__(self, keys=(), ping_error=None):
        self.keys = set(keys)
        self.ping_error = ping_error
        self.pings = 0
        self.deleted = []
        self.closed = False

    async def ping(self):
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def scan_iter(self, match=None, count=None):
        prefix = match.rstrip("*")
        for k in sorted(self.keys):
            if k.startswith(prefix):
                yield k

    async def delete(self, *keys):
        self.deleted.extend(keys)
        return len(keys)

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_redis_store_connect_gives_up():
    fake = _FakeRedis(ping_error=RedisConnectionError("refused"))
    store = RedisStore(fake, connect_attempts=2)
    with pytest.raises(StoreUnavailable) as exc:
        await store.connect()
    assert fake.pings == 2
    assert isinstance(exc.value.__cause__, RedisConnectionError)


@pytest.mark.asyncio
async def test_redis_store_connect_ok_and_close():
    fake = _FakeRedis()
    store = RedisStore(fake)
    await store.connect()
    assert fake.pings == 1
    await store.aclose()
    assert fake.closed


@pytest.mark.asyncio
async def test_redis_store_delete_prefix_scans():
    fake = _FakeRedis(keys=["spider.j:queue", "spider.j:total", "spider.jj:queue"])
    store = RedisStore(fake)
    assert await store.delete_prefix("spider.j:") == 2
    assert sorted(fake.deleted) == ["spider.j:queue", "spider.j:total"]
    assert await store.delete() == 0
