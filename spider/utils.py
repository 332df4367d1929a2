from __future__ import annotations

import inspect
import logging
import os
import re
from typing import Any, Optional

# ========== Environment helpers ==========

def getenv_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return v if v is not None and v.strip() else default

def getenv_int(name: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val

def getenv_float(name: str, default: float, min_val: Optional[float] = None, max_val: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = float(raw)
    except ValueError:
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val

def getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}

def parse_log_level(name: str, default: int = logging.INFO) -> int:
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else default

# ========== Exceptions ==========

class SpiderError(Exception):
    """Base class for dispatcher errors."""

class ConfigError(SpiderError, ValueError):
    """Job configuration is unusable (e.g. missing name). Fatal at construction."""

class InvalidRequest(SpiderError, ValueError):
    """Request descriptor cannot be normalized or its URI is malformed."""

class StoreUnavailable(SpiderError):
    """Shared store could not be reached."""

# ========== Misc ==========

def slugify(text: str, max_len: int = 80) -> str:
    text = (text or "").strip().lower()
    text = re.sub(r"[^a-z0-9\-_.]+", "-", text)
    text = re.sub(r"-{2,}", "-", text).strip("-._")
    if len(text) > max_len:
        text = text[:max_len].rstrip("-._")
    return text or "untitled"

async def maybe_await(value: Any) -> Any:
    """Resolve callback results that may or may not be awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value

def error_message(exc: BaseException) -> str:
    msg = str(exc).strip()
    return msg or type(exc).__name__
