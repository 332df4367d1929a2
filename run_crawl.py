from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

from components.request_source import count_requests, request_producer
from extensions.logging import LoggingExtension
from spider.config import JobConfig, load_settings
from spider.crawler import Spider
from spider.request import CanonicalRequest
from spider.utils import parse_log_level


# ----------------------------
# CLI parsing
# ----------------------------

def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Populate a Redis-backed request queue from a file and crawl it with bounded concurrency"
    )

    p.add_argument("--name", required=True, help="Job name; namespaces every Redis key of the run")
    p.add_argument("--source", type=Path, required=True, help="Request source (.txt, .csv with a 'uri' column, or .jsonl)")
    p.add_argument("--limit", type=int, default=None, help="Optional limit of source rows")
    p.add_argument("--base-uri", type=str, default="", help="Prefix prepended to every request uri")

    p.add_argument("--concurrency", type=int, default=1, help="Max requests in flight")
    p.add_argument("--retry-count", type=int, default=2, help="Retries per request after the first failure")
    p.add_argument("--interval", type=float, default=0.0, help="Pause (seconds) after each completion, per slot")
    p.add_argument("--timeout", type=float, default=10.0, help="Per-request timeout (seconds)")
    p.add_argument("--log-step", type=int, default=2, help="Log progress every N resolved requests")
    p.add_argument("--resume", action="store_true", help="Continue an interrupted run instead of repopulating")

    p.add_argument("--redis-url", type=str, default=None, help="Overrides SPIDER_REDIS_URL")
    p.add_argument("--log-level", type=str, default=None, help="Overrides SPIDER_LOG_LEVEL")
    return p.parse_args()


# ----------------------------
# Callbacks
# ----------------------------

def _on_page(body: str, request: CanonicalRequest, spider: Spider, headers: Any) -> None:
    spider.log.info(
        "fetched %s %s (%d chars, %s)",
        request.method, request.uri, len(body or ""), headers.get("content-type", "-"),
    )


def _on_give_up(request: CanonicalRequest, message: str, body: Optional[str]) -> None:
    logging.getLogger("run_crawl").warning("giving up on %s %s: %s", request.method, request.uri, message)


# ----------------------------
# Main
# ----------------------------

async def main_async() -> None:
    args = _parse_args()

    settings = load_settings()
    if args.redis_url:
        settings = replace(settings, redis_url=args.redis_url)
    level = parse_log_level(args.log_level or settings.log_level)

    log_ext = LoggingExtension(settings.log_dir, global_level=level)
    root_logger = logging.getLogger("run_crawl")

    job = JobConfig(
        name=args.name,
        concurrency=args.concurrency,
        resume=args.resume,
        timeout=args.timeout,
        log_step=args.log_step,
        base_uri=args.base_uri,
        interval=args.interval,
        queue_len=count_requests(args.source, limit=args.limit),
        retry_count=args.retry_count,
        requests=request_producer(args.source, limit=args.limit),
        success=_on_page,
        error=_on_give_up,
    )

    spider = Spider(job, settings=settings)
    log_ext.get_job_logger(spider.namespace)
    root_logger.info("Job %s: %s -> %s", job.name, args.source, spider.namespace)
    try:
        summary = await spider.run()
    finally:
        await spider.aclose()
        log_ext.close()

    print(json.dumps(summary.as_dict(), indent=2))


# ----------------------------
# Entrypoint
# ----------------------------

def main() -> None:
    asyncio.run(main_async())

if __name__ == "__main__":
    main()
