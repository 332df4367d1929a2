from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from .utils import ConfigError, getenv_bool, getenv_float, getenv_int, getenv_str

logger = logging.getLogger(__name__)

# ---------- Project Paths ----------
PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
LOG_DIR: Path = PROJECT_ROOT / "logs"


# ---------- Process-wide settings ----------
@dataclass(frozen=True)
class Settings:
    # Shared store
    redis_url: str
    key_prefix: str                  # namespace = key_prefix + job name
    redis_connect_attempts: int
    redis_socket_timeout: float

    # Logging
    log_dir: Path
    log_level: str

    # HTTP client
    user_agent: str
    follow_redirects: bool


def load_settings() -> Settings:
    return Settings(
        redis_url=getenv_str("SPIDER_REDIS_URL", "redis://127.0.0.1:6379/0"),
        key_prefix=getenv_str("SPIDER_KEY_PREFIX", "spider."),
        redis_connect_attempts=getenv_int("SPIDER_REDIS_CONNECT_ATTEMPTS", 3, 1, 10),
        redis_socket_timeout=getenv_float("SPIDER_REDIS_SOCKET_TIMEOUT", 5.0, 0.1, 120.0),

        log_dir=Path(getenv_str("SPIDER_LOG_DIR", str(LOG_DIR))),
        log_level=getenv_str("SPIDER_LOG_LEVEL", "INFO").upper(),

        user_agent=getenv_str("SPIDER_USER_AGENT", "spider-queue/0.1"),
        follow_redirects=getenv_bool("SPIDER_FOLLOW_REDIRECTS", True),
    )


# ---------- Per-job config ----------

SuccessCallback = Callable[..., Any]   # (body, request, spider, headers) -> outcome | None
ErrorCallback = Callable[..., Any]     # (request, message, body) -> None


def _no_requests() -> Iterable[Any]:
    return ()


def _noop(*_args: Any) -> None:
    return None


@dataclass(frozen=True)
class JobConfig:
    name: str
    concurrency: int = 1
    resume: bool = False              # "continue" in mapping form
    timeout: float = 10.0
    log_step: int = 2                 # log progress every N resolved requests
    base_uri: str = ""
    interval: float = 0.0             # pause after each completion (seconds)
    queue_len: Optional[int] = None   # expected queue length, only for population logs
    retry_count: int = 2
    check_black: bool = True          # reserved
    requests: Callable[[], Iterable[Any]] = field(default=_no_requests, repr=False)
    success: SuccessCallback = field(default=_noop, repr=False)
    error: ErrorCallback = field(default=_noop, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigError("job name is required")
        if not callable(self.requests):
            raise ConfigError("requests must be a zero-argument callable")
        if not callable(self.success) or not callable(self.error):
            raise ConfigError("success/error callbacks must be callable")

        # clamp numeric knobs like the env loaders do
        object.__setattr__(self, "concurrency", max(1, int(self.concurrency)))
        object.__setattr__(self, "log_step", max(1, int(self.log_step)))
        object.__setattr__(self, "retry_count", max(0, int(self.retry_count)))
        object.__setattr__(self, "interval", max(0.0, float(self.interval or 0)))
        object.__setattr__(self, "timeout", float(self.timeout))
        object.__setattr__(self, "base_uri", str(self.base_uri or ""))
        if self.queue_len is not None:
            object.__setattr__(self, "queue_len", int(self.queue_len) or None)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "JobConfig":
        """
        Build from a plain options mapping using the classic option names
        (``continue`` instead of ``resume``). Unknown keys are ignored with a warning.
        """
        opts = dict(options or {})
        if "continue" in opts:
            opts["resume"] = bool(opts.pop("continue"))
        if not opts.get("name"):
            raise ConfigError("job name is required")

        known = {f.name for f in fields(cls)}
        for key in sorted(set(opts) - known):
            logger.warning("Ignoring unknown job option %r", key)
        return cls(**{k: v for k, v in opts.items() if k in known})
