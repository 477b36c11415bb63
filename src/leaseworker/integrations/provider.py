"""Generation provider client (OpenAI-compatible chat completions over httpx)."""

import logging
from typing import Any, Optional

import httpx

from leaseworker.engine.errors import FatalProviderError, TransientProviderError
from leaseworker.models import GenerationRequest
from leaseworker.observability.metrics import metrics

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


class ChatCompletionsProvider:
    """
    Client for ``POST {base_url}/chat/completions``.

    Usage:
        provider = ChatCompletionsProvider("https://api.openai.com/v1", api_key="...")
        text = await provider.generate(request)
        await provider.close()

    Raises TransientProviderError for timeouts, connection failures and
    408/409/425/429/5xx responses; FatalProviderError for other error
    responses and unreadable bodies.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_seconds: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client:
            await self._client.aclose()

    async def generate(self, request: GenerationRequest) -> str:
        body: dict[str, Any] = {"model": request.model, "messages": request.messages}
        body.update(request.sampling)

        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=body,
                headers=self.headers,
            )
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Provider request timed out: {e!r}") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"Provider connection failed: {e!r}") from e

        if response.status_code >= 400:
            detail = response.text[:500]
            message = f"Provider returned {response.status_code}: {detail}"
            if response.status_code in TRANSIENT_STATUS_CODES:
                raise TransientProviderError(message, status_code=response.status_code)
            raise FatalProviderError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise FatalProviderError(
                f"Provider returned a non-JSON body: {response.text[:200]!r}",
                status_code=response.status_code,
            ) from e

        self._record_usage(request.model, data)
        return self._extract_text(data)

    def _extract_text(self, data: Any) -> str:
        """First choice's message content; an empty string when absent."""
        if not isinstance(data, dict):
            raise FatalProviderError("Provider response is not a JSON object")

        choices = data.get("choices") or []
        if not choices:
            logger.warning("Provider response has no choices")
            return ""

        content = (choices[0].get("message") or {}).get("content")
        if content is None:
            return ""
        if isinstance(content, list):
            # Content-part arrays: keep the text parts in order
            return "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        return str(content)

    def _record_usage(self, model: str, data: Any) -> None:
        usage = data.get("usage") if isinstance(data, dict) else None
        if not isinstance(usage, dict):
            return
        prompt_tokens = usage.get("prompt_tokens") or 0
        completion_tokens = usage.get("completion_tokens") or 0
        metrics.inc_counter("generation.tokens.prompt", prompt_tokens)
        metrics.inc_counter("generation.tokens.completion", completion_tokens)
        metrics.inc_counter(f"generation.tokens.{model}", prompt_tokens + completion_tokens)
