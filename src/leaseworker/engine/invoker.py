"""Generation call with bounded retry for transient provider failures."""

import asyncio
import logging
import re
from typing import Awaitable, Callable, Protocol

import httpx

from leaseworker.engine.errors import (
    FatalProviderError,
    MalformedResultError,
    TransientProviderError,
)
from leaseworker.models import GenerationRequest
from leaseworker.observability.metrics import metrics

logger = logging.getLogger("leaseworker.invoker")

DEFAULT_MAX_ATTEMPTS = 3

TRANSIENT_MESSAGE_PATTERN = re.compile(
    r"timeout|timed out|ETIMEDOUT|429|rate.?limit|temporar|unavailable|ECONNRESET|connection reset",
    re.IGNORECASE,
)


class GenerationProvider(Protocol):
    """Anything that turns a request into the complete generated text."""

    async def generate(self, request: GenerationRequest) -> str:
        ...


def is_transient_error(error: BaseException) -> bool:
    """
    Classify an error raised while calling the provider.

    Classified provider errors keep their class. Anything else is judged by
    type (network and timeout failures) and, as a last resort, by message.
    """
    if isinstance(error, TransientProviderError):
        return True
    if isinstance(error, (FatalProviderError, MalformedResultError)):
        return False
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionResetError)):
        return True
    return bool(TRANSIENT_MESSAGE_PATTERN.search(str(error)))


class GenerationInvoker:
    """
    Calls the provider, retrying transient failures with linear backoff.

    Attempt n that fails transiently sleeps ``base_delay_seconds * n`` before
    attempt n + 1. A transient failure on the last attempt is raised as
    FatalProviderError chained from it; a non-transient failure is raised as
    FatalProviderError immediately.
    """

    def __init__(
        self,
        provider: GenerationProvider,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.provider = provider
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    async def invoke(self, request: GenerationRequest) -> str:
        last_error: BaseException | None = None

        for attempt in range(1, self.max_attempts + 1):
            metrics.inc_counter("generation.attempts")
            try:
                with metrics.timed("generation.duration_ms"):
                    return await self.provider.generate(request)
            except FatalProviderError:
                metrics.inc_counter("generation.fatal")
                raise
            except Exception as e:
                if not is_transient_error(e):
                    metrics.inc_counter("generation.fatal")
                    raise FatalProviderError(f"{type(e).__name__}: {e}", attempts=attempt) from e

                last_error = e
                if attempt == self.max_attempts:
                    break

                delay = self.base_delay_seconds * attempt
                metrics.inc_counter("generation.retries")
                logger.warning(
                    f"Transient provider error (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await self._sleep(delay)

        metrics.inc_counter("generation.exhausted")
        status_code = last_error.status_code if isinstance(last_error, TransientProviderError) else None
        raise FatalProviderError(
            f"Gave up after {self.max_attempts} attempts: {last_error}",
            status_code=status_code,
            attempts=self.max_attempts,
        ) from last_error
