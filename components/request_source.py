from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Union

logger = logging.getLogger(__name__)

Descriptor = Union[str, Dict[str, Any]]


def _iter_txt(path: Path, *, encoding: str) -> Iterator[Descriptor]:
    with path.open("r", encoding=encoding) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                yield line


def _iter_csv_rows(path: Path, *, encoding: str) -> Iterator[Descriptor]:
    """
    Internal helper: yields request descriptors from a CSV file with a ``uri``
    column. ``method`` is optional; every other column travels as an extra.
    """
    with path.open("r", encoding=encoding, newline="") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames or "uri" not in reader.fieldnames:
            raise ValueError(f"{path}: CSV source needs a 'uri' column")
        for row in reader:
            uri = (row.get("uri") or "").strip()
            if not uri:
                continue
            descriptor: Dict[str, Any] = {k: v for k, v in row.items() if k and v not in (None, "")}
            descriptor["uri"] = uri
            if descriptor.get("method"):
                descriptor["method"] = descriptor["method"].strip().upper()
            yield descriptor


def _iter_jsonl(path: Path, *, encoding: str) -> Iterator[Descriptor]:
    with path.open("r", encoding=encoding) as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                item = json.loads(line)
            except ValueError as e:
                logger.warning("%s:%d: invalid JSON skipped (%s)", path, lineno, e)
                continue
            if isinstance(item, (str, dict)):
                yield item
            else:
                logger.warning("%s:%d: expected a string or object, got %s", path, lineno, type(item).__name__)


_READERS: Dict[str, Callable[..., Iterator[Descriptor]]] = {
    ".txt": _iter_txt,
    ".csv": _iter_csv_rows,
    ".jsonl": _iter_jsonl,
    ".ndjson": _iter_jsonl,
}


def iter_requests(path: Path, *, encoding: str = "utf-8", limit: Optional[int] = None) -> Iterator[Descriptor]:
    """Lazily yield request descriptors from a .txt / .csv / .jsonl file."""
    path = Path(path)
    reader = _READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported request source {path.name!r} (expected .txt, .csv or .jsonl)")
    for count, descriptor in enumerate(reader(path, encoding=encoding)):
        if limit is not None and count >= limit:
            break
        yield descriptor


def request_producer(path: Path, *, encoding: str = "utf-8", limit: Optional[int] = None) -> Callable[[], Iterable[Descriptor]]:
    """Zero-argument producer; each call re-reads the file from the start."""
    def _produce() -> Iterable[Descriptor]:
        return iter_requests(path, encoding=encoding, limit=limit)
    return _produce


def count_requests(path: Path, *, encoding: str = "utf-8", limit: Optional[int] = None) -> int:
    """Number of descriptors the source yields; used as the population progress hint."""
    return sum(1 for _ in iter_requests(path, encoding=encoding, limit=limit))
