"""API dependencies."""

import logging
import secrets

from fastapi import Depends, Header, HTTPException, Request

from leaseworker.bootstrap import Runtime
from leaseworker.db import WorkItemRepository

logger = logging.getLogger("leaseworker.api")


def get_runtime(request: Request) -> Runtime:
    """Runtime attached to the app by create_app() or the lifespan."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return runtime


def get_repository(runtime: Runtime = Depends(get_runtime)) -> WorkItemRepository:
    return runtime.repository


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
    runtime: Runtime = Depends(get_runtime),
) -> None:
    """
    Check the shared API key when one is configured.

    Accepts ``Authorization: Bearer <key>`` or ``X-API-Key: <key>``. With no
    key configured every request is let through (local use).
    """
    expected = runtime.settings.api_key
    if not expected:
        return

    provided = None
    if authorization and authorization.startswith("Bearer "):
        provided = authorization[7:]
    elif x_api_key:
        provided = x_api_key

    if not provided:
        raise HTTPException(status_code=401, detail="Missing API key")

    if not secrets.compare_digest(provided, expected):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
