"""
Shared key/value store used for all queue state of a job.

``Store`` is the contract the queue state machine talks to. Two backends:

    Store (Protocol)
    ├── InMemoryStore: single process, for tests and dry runs
    └── RedisStore: redis.asyncio, survives process restarts

All values are strings (Redis with ``decode_responses=True``); counters are
returned as strings by ``get`` and as ints by ``incr``/``decr``/``hincrby``.
"""
from __future__ import annotations

import logging
import re
from collections import deque
from typing import Deque, Dict, List, Optional, Protocol, Set, Union

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .config import Settings
from .utils import StoreUnavailable

logger = logging.getLogger(__name__)

Field = Union[str, int]


class Store(Protocol):
    """Async list/hash/set/counter primitives, Redis semantics."""

    # lists
    async def lpush(self, key: str, value: str) -> int: ...
    async def rpush(self, key: str, value: str) -> int: ...
    async def rpop(self, key: str) -> Optional[str]: ...
    async def llen(self, key: str) -> int: ...

    # hashes
    async def hset(self, key: str, field: Field, value: str) -> int: ...
    async def hget(self, key: str, field: Field) -> Optional[str]: ...
    async def hdel(self, key: str, field: Field) -> int: ...
    async def hgetall(self, key: str) -> Dict[str, str]: ...
    async def hincrby(self, key: str, field: Field, amount: int = 1) -> int: ...

    # sets
    async def sadd(self, key: str, member: str) -> int: ...

    # strings / counters
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: Union[str, int]) -> None: ...
    async def incr(self, key: str) -> int: ...
    async def decr(self, key: str) -> int: ...

    # keys
    async def delete(self, *keys: str) -> int: ...
    async def delete_prefix(self, prefix: str) -> int: ...

    async def aclose(self) -> None: ...


# ------------------------------------------------------------------ #
# In-memory backend
# ------------------------------------------------------------------ #


class InMemoryStore:
    """Dict-backed store mirroring the Redis commands the queue uses."""

    def __init__(self) -> None:
        self._lists: Dict[str, Deque[str]] = {}
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._strings: Dict[str, str] = {}

    def keys(self) -> List[str]:
        return sorted({*self._lists, *self._hashes, *self._sets, *self._strings})

    # lists (left = head, right = tail; empty lists vanish like in Redis)

    async def lpush(self, key: str, value: str) -> int:
        lst = self._lists.setdefault(key, deque())
        lst.appendleft(value)
        return len(lst)

    async def rpush(self, key: str, value: str) -> int:
        lst = self._lists.setdefault(key, deque())
        lst.append(value)
        return len(lst)

    async def rpop(self, key: str) -> Optional[str]:
        lst = self._lists.get(key)
        if not lst:
            return None
        value = lst.pop()
        if not lst:
            del self._lists[key]
        return value

    async def llen(self, key: str) -> int:
        return len(self._lists.get(key, ()))

    # hashes

    async def hset(self, key: str, field: Field, value: str) -> int:
        h = self._hashes.setdefault(key, {})
        created = str(field) not in h
        h[str(field)] = str(value)
        return int(created)

    async def hget(self, key: str, field: Field) -> Optional[str]:
        return self._hashes.get(key, {}).get(str(field))

    async def hdel(self, key: str, field: Field) -> int:
        h = self._hashes.get(key)
        if not h or str(field) not in h:
            return 0
        del h[str(field)]
        if not h:
            del self._hashes[key]
        return 1

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self._hashes.get(key, {}))

    async def hincrby(self, key: str, field: Field, amount: int = 1) -> int:
        h = self._hashes.setdefault(key, {})
        value = int(h.get(str(field), 0)) + amount
        h[str(field)] = str(value)
        return value

    # sets

    async def sadd(self, key: str, member: str) -> int:
        s = self._sets.setdefault(key, set())
        if member in s:
            return 0
        s.add(member)
        return 1

    # strings / counters

    async def get(self, key: str) -> Optional[str]:
        return self._strings.get(key)

    async def set(self, key: str, value: Union[str, int]) -> None:
        self._strings[key] = str(value)

    async def incr(self, key: str) -> int:
        value = int(self._strings.get(key, 0)) + 1
        self._strings[key] = str(value)
        return value

    async def decr(self, key: str) -> int:
        value = int(self._strings.get(key, 0)) - 1
        self._strings[key] = str(value)
        return value

    # keys

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            for bucket in (self._lists, self._hashes, self._sets, self._strings):
                if key in bucket:
                    del bucket[key]
                    removed += 1
        return removed

    async def delete_prefix(self, prefix: str) -> int:
        return await self.delete(*[k for k in self.keys() if k.startswith(prefix)])

    async def aclose(self) -> None:
        return None


# ------------------------------------------------------------------ #
# Redis backend
# ------------------------------------------------------------------ #

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def escape_glob(text: str) -> str:
    """Escape Redis MATCH metacharacters so a literal prefix can be scanned."""
    return _GLOB_SPECIAL.sub(r"\\\1", text)


class RedisStore:
    """
    Redis-backed store (``redis.asyncio``). Every primitive maps 1:1 to a Redis
    command, so counter updates stay atomic across concurrent completions.
    """

    def __init__(self, client: "aioredis.Redis", *, connect_attempts: int = 3) -> None:
        self._client = client
        self._connect_attempts = connect_attempts

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 5.0, connect_attempts: int = 3) -> "RedisStore":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, connect_attempts=connect_attempts)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisStore":
        return cls.from_url(
            settings.redis_url,
            socket_timeout=settings.redis_socket_timeout,
            connect_attempts=settings.redis_connect_attempts,
        )

    async def connect(self) -> None:
        """Ping with bounded exponential backoff; raise StoreUnavailable when Redis stays down."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._connect_attempts),
                wait=wait_exponential_jitter(initial=0.2, max=5.0, jitter=0.2),
                retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError, OSError)),
            ):
                with attempt:
                    await self._client.ping()
        except RetryError as e:
            raise StoreUnavailable(f"redis unreachable after {self._connect_attempts} attempts") from e.last_attempt.exception()
        logger.debug("Connected to redis")

    # lists

    async def lpush(self, key: str, value: str) -> int:
        return int(await self._client.lpush(key, value))

    async def rpush(self, key: str, value: str) -> int:
        return int(await self._client.rpush(key, value))

    async def rpop(self, key: str) -> Optional[str]:
        return await self._client.rpop(key)

    async def llen(self, key: str) -> int:
        return int(await self._client.llen(key))

    # hashes

    async def hset(self, key: str, field: Field, value: str) -> int:
        return int(await self._client.hset(key, str(field), value))

    async def hget(self, key: str, field: Field) -> Optional[str]:
        return await self._client.hget(key, str(field))

    async def hdel(self, key: str, field: Field) -> int:
        return int(await self._client.hdel(key, str(field)))

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(await self._client.hgetall(key))

    async def hincrby(self, key: str, field: Field, amount: int = 1) -> int:
        return int(await self._client.hincrby(key, str(field), amount))

    # sets

    async def sadd(self, key: str, member: str) -> int:
        return int(await self._client.sadd(key, member))

    # strings / counters

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: Union[str, int]) -> None:
        await self._client.set(key, value)

    async def incr(self, key: str) -> int:
        return int(await self._client.incr(key))

    async def decr(self, key: str) -> int:
        return int(await self._client.decr(key))

    # keys

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._client.delete(*keys))

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        batch: List[str] = []
        async for key in self._client.scan_iter(match=escape_glob(prefix) + "*", count=500):
            batch.append(key)
            if len(batch) >= 500:
                removed += await self.delete(*batch)
                batch.clear()
        if batch:
            removed += await self.delete(*batch)
        return removed

    async def aclose(self) -> None:
        await self._client.aclose()
