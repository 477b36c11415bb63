"""Logging setup."""

import logging
from typing import Any, MutableMapping

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install the process-wide log format once; later calls only adjust the level."""
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(getattr(logging, level.upper(), logging.INFO))
        return
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


class WorkerLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the worker identity."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['worker_id']}] {msg}", kwargs


def worker_logger(name: str, worker_id: str) -> WorkerLogAdapter:
    return WorkerLogAdapter(logging.getLogger(name), {"worker_id": worker_id})
