from __future__ import annotations
import logging
from datetime import date
from pathlib import Path
from typing import Dict, Optional

from spider.utils import slugify

_FILE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _NamespaceFilter(logging.Filter):
    """Pass records from the job logger ``namespace`` and its children only."""

    def __init__(self, namespace: str) -> None:
        super().__init__()
        self.namespace = namespace

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name or ""
        return name == self.namespace or name.startswith(self.namespace + ".")


class LoggingExtension:
    """
    Console output for the whole process plus one dated file per job.

    Job files hang off the root logger and filter on the job namespace, so a
    Spider keeps logging through ``logging.getLogger(namespace)`` unchanged.
    """

    def __init__(
        self,
        log_dir: Path = Path("logs"),
        *,
        global_level: int = logging.INFO,
        per_job_level: Optional[int] = None,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.global_level = global_level
        self.per_job_level = global_level if per_job_level is None else per_job_level
        self._job_handlers: Dict[str, logging.Handler] = {}

        self._install_console(global_level)
        # levels are enforced per handler
        logging.getLogger().setLevel(logging.DEBUG)

    def _install_console(self, level: int) -> None:
        root = logging.getLogger()
        for h in list(root.handlers):
            root.removeHandler(h)

        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        root.addHandler(console)

    def job_log_path(self, namespace: str, day: Optional[date] = None) -> Path:
        day = day or date.today()
        return self.log_dir / f"{slugify(namespace)}-{day.isoformat()}.log"

    def get_job_logger(self, namespace: str) -> logging.Logger:
        """Logger for ``namespace``; attaches its file handler on first use."""
        if namespace not in self._job_handlers:
            path = self.job_log_path(namespace)
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            handler.setLevel(self.per_job_level)
            handler.addFilter(_NamespaceFilter(namespace))
            handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT))
            logging.getLogger().addHandler(handler)
            self._job_handlers[namespace] = handler

        job_logger = logging.getLogger(namespace)
        job_logger.setLevel(logging.DEBUG)
        return job_logger

    def close(self) -> None:
        root = logging.getLogger()
        for handler in self._job_handlers.values():
            root.removeHandler(handler)
            handler.flush()
            handler.close()
        self._job_handlers.clear()
