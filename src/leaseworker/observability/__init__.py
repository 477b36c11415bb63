"""Observability helpers for leaseworker."""

from leaseworker.observability.log import configure_logging, worker_logger
from leaseworker.observability.metrics import metrics

__all__ = ["configure_logging", "metrics", "worker_logger"]
