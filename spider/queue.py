from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Union

from .progress import PopulationProgress
from .request import CanonicalRequest, normalize_request
from .store import Store
from .utils import InvalidRequest

RequestSource = Union[Iterable[Any], AsyncIterator[Any]]


class RequestQueue:
    """
    Queue state of one job, kept in the store under ``<namespace>:<key>``:

    - ``queue``        main list; populated at the tail (left), dispatched from the head (right)
    - ``queue:error``  failed requests with retry budget left; drained before ``queue``
    - ``requesting``   in-flight hash, slot -> serialized request
    - ``retry_count``  hash, serialized request -> failures so far
    - ``sets``         dedup set, only alive while populating
    - ``total`` / ``overplus``  counters; the run is over when overplus hits 0
    """

    def __init__(self, store: Store, namespace: str, *, base_uri: str = "", logger: Optional[logging.Logger] = None):
        self.store = store
        self.namespace = namespace
        self.base_uri = base_uri
        self.log = logger or logging.getLogger(__name__)

    def key(self, name: str) -> str:
        return f"{self.namespace}:{name}"

    # ---------------------- Population / resume ----------------------

    async def populate(self, source: RequestSource, *, queue_len: Optional[int] = None) -> int:
        """Fresh run: clear stale state, enqueue valid distinct requests, fix total/overplus."""
        self.log.info("queue build start")
        await self.teardown()

        progress = PopulationProgress(queue_len, self.log)
        index = 0
        if hasattr(source, "__aiter__"):
            async for descriptor in source:  # type: ignore[union-attr]
                await self._populate_one(descriptor)
                await progress.step(index, self.length)
                index += 1
        else:
            for descriptor in source:  # type: ignore[union-attr]
                await self._populate_one(descriptor)
                await progress.step(index, self.length)
                index += 1

        await self.store.delete(self.key("sets"))

        total = await self.length()
        await self.store.set(self.key("overplus"), total)
        await self.store.set(self.key("total"), total)
        self.log.info("queue build end: %d requests (%d produced)", total, index)
        return total

    async def _populate_one(self, descriptor: Any) -> bool:
        request = self._normalize(descriptor)
        if request is None:
            return False
        raw = request.dumps()
        if await self.store.sadd(self.key("sets"), raw):
            await self.store.lpush(self.key("queue"), raw)
            return True
        return False

    async def resume(self) -> int:
        """Interrupted run: requeue every unacknowledged in-flight request, keep total."""
        in_flight = await self.in_flight()
        for raw in in_flight.values():
            await self.store.rpush(self.key("queue"), raw)
        await self.store.delete(self.key("requesting"))

        overplus = await self.length() + await self.error_length()
        await self.store.set(self.key("overplus"), overplus)
        self.log.info("queue resumed: %d requeued from in-flight, %d remaining", len(in_flight), overplus)
        return overplus

    async def add(self, descriptor: Any) -> bool:
        """Mid-run insertion at the dispatch end, so discovered work runs next."""
        request = self._normalize(descriptor)
        if request is None:
            return False
        await self.store.rpush(self.key("queue"), request.dumps())
        await self.store.incr(self.key("overplus"))
        await self.store.incr(self.key("total"))
        return True

    def _normalize(self, descriptor: Any) -> Optional[CanonicalRequest]:
        try:
            return normalize_request(descriptor, self.base_uri)
        except InvalidRequest as e:
            self.log.info("%s, skipped", e)
            return None

    # ---------------------- Dispatch ----------------------

    async def next_request(self) -> Optional[str]:
        raw = await self.store.rpop(self.key("queue:error"))
        if raw is None:
            raw = await self.store.rpop(self.key("queue"))
        return raw

    async def mark_in_flight(self, slot: int, raw: str) -> None:
        await self.store.hset(self.key("requesting"), slot, raw)

    async def release(self, slot: int) -> None:
        await self.store.hdel(self.key("requesting"), slot)

    async def in_flight(self) -> Dict[str, str]:
        return await self.store.hgetall(self.key("requesting"))

    # ---------------------- Retry bookkeeping ----------------------

    async def retry_count(self, raw: str) -> int:
        return int(await self.store.hget(self.key("retry_count"), raw) or 0)

    async def schedule_retry(self, raw: str) -> int:
        await self.store.lpush(self.key("queue:error"), raw)
        return await self.store.hincrby(self.key("retry_count"), raw, 1)

    async def forget_retries(self, raw: str) -> None:
        await self.store.hdel(self.key("retry_count"), raw)

    # ---------------------- Counters ----------------------

    async def length(self) -> int:
        return await self.store.llen(self.key("queue"))

    async def error_length(self) -> int:
        return await self.store.llen(self.key("queue:error"))

    async def total(self) -> int:
        return int(await self.store.get(self.key("total")) or 0)

    async def overplus(self) -> int:
        return int(await self.store.get(self.key("overplus")) or 0)

    async def decr_overplus(self) -> int:
        return await self.store.decr(self.key("overplus"))

    # ---------------------- Teardown ----------------------

    async def teardown(self) -> int:
        return await self.store.delete_prefix(self.namespace + ":")
