from __future__ import annotations

import asyncio
import logging
import time
from contextlib import ExitStack
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx

from .config import JobConfig, Settings, load_settings
from .progress import ProgressReporter
from .queue import RequestQueue
from .request import CanonicalRequest
from .store import RedisStore, Store
from .utils import error_message, maybe_await


@dataclass
class RunStatus:
    success_count: int = 0
    transport_failures: int = 0
    handler_failures: int = 0
    error_handler_failures: int = 0


@dataclass
class RunSummary:
    elapsed: float
    concurrency: int
    total: int
    success: int
    transport_failures: int
    handler_failures: int
    error_handler_failures: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationOutcome:
    """What a success callback may return; ``status <= 0`` marks the content as invalid."""
    status: int = 1
    error_reasons: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status > 0

    @classmethod
    def coerce(cls, value: Any) -> Optional["ValidationOutcome"]:
        if value is None or isinstance(value, ValidationOutcome):
            return value
        if isinstance(value, Mapping) and "status" in value:
            reasons = value.get("error_reasons") or []
            if isinstance(reasons, str):
                reasons = [reasons]
            reasons = [str(r) for r in reasons]
            try:
                status = int(value["status"])
            except (TypeError, ValueError):
                # unreadable status counts as invalid content
                return cls(status=0, error_reasons=reasons + [f"invalid status {value['status']!r}"])
            return cls(status=status, error_reasons=reasons)
        return None


class Spider:
    """
    Bounded-concurrency dispatcher over a store-backed request queue.

    ``run()`` populates (or resumes) the queue, drains it in dispatch cycles of
    ``concurrency`` slot workers, retries transport failures through the error
    queue, and clears every key of the job namespace when done.
    """

    def __init__(
        self,
        config: Union[JobConfig, Mapping[str, Any]],
        *,
        store: Optional[Store] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config if isinstance(config, JobConfig) else JobConfig.from_mapping(config)
        self.settings = settings or load_settings()
        self.namespace = f"{self.settings.key_prefix}{self.config.name}"
        self.log = logging.getLogger(self.namespace)

        self._owns_store = store is None
        self.store: Store = store if store is not None else RedisStore.from_settings(self.settings)
        self.queue = RequestQueue(self.store, self.namespace, base_uri=self.config.base_uri, logger=self.log)
        self.progress = ProgressReporter(self.queue, self.config.log_step, self.log)

        self.status = RunStatus()
        self._transport = transport
        self._lock = asyncio.Lock()
        self._work_ready = asyncio.Condition()
        self._wakeups = 0

    # ---------- public operations ----------

    async def run(self) -> RunSummary:
        started = time.monotonic()
        if isinstance(self.store, RedisStore):
            await self.store.connect()

        if self.config.resume and await self.queue.overplus() > 0:
            await self.queue.resume()
        else:
            await self.queue.populate(self.config.requests(), queue_len=self.config.queue_len)

        await self._dispatch()

        total = await self.queue.total()
        await self.queue.teardown()
        summary = RunSummary(
            elapsed=round(time.monotonic() - started, 6),
            concurrency=self.config.concurrency,
            total=total,
            success=self.status.success_count,
            transport_failures=self.status.transport_failures,
            handler_failures=self.status.handler_failures,
            error_handler_failures=self.status.error_handler_failures,
        )
        self.log.info(
            "crawl end: elapsed=%.6fs concurrency=%d total=%d success=%d "
            "request_failed=%d handler_failed=%d error_handler_failed=%d",
            summary.elapsed, summary.concurrency, summary.total,
            summary.success, summary.transport_failures, summary.handler_failures, summary.error_handler_failures,
            extra={"spider_summary": summary.as_dict()},
        )
        return summary

    def start(self) -> RunSummary:
        """Blocking entry point for synchronous drivers."""
        async def _main() -> RunSummary:
            try:
                return await self.run()
            finally:
                await self.aclose()
        return asyncio.run(_main())

    async def add_request(self, descriptor: Any) -> bool:
        added = await self.queue.add(descriptor)
        if added:
            await self._signal_work()
        return added

    async def get_request_length(self) -> int:
        return await self.queue.length()

    async def get_request_total(self) -> int:
        return await self.queue.total()

    async def get_request_overplus(self) -> int:
        return await self.queue.overplus()

    async def aclose(self) -> None:
        if self._owns_store:
            await self.store.aclose()

    # ---------- dispatch loop ----------

    def _new_client(self) -> httpx.AsyncClient:
        n = self.config.concurrency
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout),
            limits=httpx.Limits(max_connections=n, max_keepalive_connections=n),
            headers={"User-Agent": self.settings.user_agent},
            follow_redirects=self.settings.follow_redirects,
            transport=self._transport,
        )

    async def _dispatch(self) -> None:
        self.log.info("crawl start")
        async with self._new_client() as client:
            while await self.queue.overplus() > 0:
                dispatched = await self._run_cycle(client)
                if dispatched == 0:
                    self.log.error(
                        "overplus is %d but both queues are empty; stopping",
                        await self.queue.overplus(),
                    )
                    break

    async def _run_cycle(self, client: httpx.AsyncClient) -> int:
        """
        Run ``concurrency`` slot workers until both queues are empty and no slot is busy.
        An idle worker parks on ``_work_ready`` while other slots are still fetching, since
        their callbacks may add requests; it leaves only once every slot has gone idle.
        """
        dispatched = 0
        busy = 0

        async def worker(slot: int) -> None:
            nonlocal dispatched, busy
            while True:
                seen = self._wakeups
                raw = await self.queue.next_request()
                if raw is None:
                    async with self._work_ready:
                        if busy == 0:
                            self._work_ready.notify_all()
                            return
                        if seen == self._wakeups:
                            await self._work_ready.wait()
                    continue

                dispatched += 1
                busy += 1
                try:
                    await self.queue.mark_in_flight(slot, raw)
                    await self._fetch(client, slot, raw)
                finally:
                    busy -= 1
                    await self._signal_work()

        await asyncio.gather(*(worker(slot) for slot in range(self.config.concurrency)))
        return dispatched

    async def _signal_work(self) -> None:
        async with self._work_ready:
            self._wakeups += 1
            self._work_ready.notify_all()

    async def _fetch(self, client: httpx.AsyncClient, slot: int, raw: str) -> None:
        request = CanonicalRequest.loads(raw)
        try:
            with ExitStack() as stack:
                kwargs = request.transport_kwargs(stack)
                response = await client.request(request.method, request.uri, **kwargs)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            await self._on_failure(slot, raw, request, e)
        else:
            await self._on_success(slot, raw, request, response)

    # ---------- completion paths ----------

    async def _on_success(self, slot: int, raw: str, request: CanonicalRequest, response: httpx.Response) -> None:
        async with self._lock:
            self.status.success_count += 1
            await self.queue.decr_overplus()
            await self.queue.release(slot)
            await self.queue.forget_retries(raw)

        try:
            outcome = await maybe_await(self.config.success(response.text, request, self, response.headers))
        except Exception as e:
            self.status.handler_failures += 1
            self._log_request_error(request, "crawler_exception", f"{type(e).__name__}: {error_message(e)}", exc_info=True)
        else:
            outcome = ValidationOutcome.coerce(outcome)
            if outcome is not None and not outcome.ok:
                self._log_request_error(request, "save_validate", sorted(outcome.error_reasons))

        await self.progress.report()
        await self._pause()

    async def _on_failure(self, slot: int, raw: str, request: CanonicalRequest, exc: BaseException) -> None:
        message = error_message(exc)
        body = exc.response.text if isinstance(exc, httpx.HTTPStatusError) else None

        async with self._lock:
            await self.queue.release(slot)
            self.status.transport_failures += 1
            self._log_request_error(request, "request_fail", message)

            exhausted = await self.queue.retry_count(raw) >= self.config.retry_count
            if exhausted:
                await self.queue.decr_overplus()
                await self.queue.forget_retries(raw)
            else:
                await self.queue.schedule_retry(raw)

        if not exhausted:
            await self._pause()
            return

        try:
            await maybe_await(self.config.error(request, message, body))
        except Exception as e:
            self.status.error_handler_failures += 1
            self._log_request_error(request, "error_callback_exception", f"{type(e).__name__}: {error_message(e)}", exc_info=True)
        self._log_request_error(request, "retry_exhausted", message)

    async def _pause(self) -> None:
        if self.config.interval:
            await asyncio.sleep(self.config.interval)

    def _log_request_error(self, request: CanonicalRequest, error_type: str, detail: Any, *, exc_info: bool = False) -> None:
        info = {
            "prefix": self.namespace,
            "request": request.to_dict(),
            "error_type": error_type,
            "error_msg": detail,
            "error_time": int(time.time()),
        }
        self.log.error(
            "request error [%s] %s %s: %s", error_type, request.method, request.uri, detail,
            exc_info=exc_info, extra={"spider_error": info},
        )
