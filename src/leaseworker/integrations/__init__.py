"""External service integrations."""

from leaseworker.integrations.provider import TRANSIENT_STATUS_CODES, ChatCompletionsProvider

__all__ = ["TRANSIENT_STATUS_CODES", "ChatCompletionsProvider"]
