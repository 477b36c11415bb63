"""Worker identity generation."""

import logging
import os
import socket
from typing import Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


def generate_worker_id(prefix: str = "leaseworker", index: Optional[int] = None) -> str:
    """
    Build a lease owner token that is unambiguous across concurrently running workers.

    Format: ``{prefix}-{hostname}-{pid}[-{index}]-{random6}``. The hostname and
    pid separate processes; the random suffix separates restarts that reuse a
    pid and sibling loops inside one process.
    """
    try:
        hostname = socket.gethostname().split(".")[0] or "localhost"
    except OSError as e:
        logger.warning(f"Failed to read hostname, omitting it from worker id: {e}")
        hostname = "unknown"

    parts = [prefix, hostname, str(os.getpid())]
    if index is not None:
        parts.append(str(index))
    parts.append(uuid4().hex[:6])
    return "-".join(parts)


def resolve_worker_ids(configured: Optional[str], count: int) -> list[str]:
    """
    Return ``count`` distinct worker ids.

    A configured id is used verbatim for a single worker and suffixed with the
    worker index when a pool shares it, so two loops never hold the same token.
    """
    if count < 1:
        raise ValueError(f"worker count must be at least 1, got {count}")

    if configured:
        if count == 1:
            return [configured]
        return [f"{configured}-{i + 1}" for i in range(count)]

    if count == 1:
        return [generate_worker_id()]
    return [generate_worker_id(index=i + 1) for i in range(count)]
