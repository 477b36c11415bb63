"""Defensive parsing of provider output."""

import json
import re
from typing import Any

from leaseworker.engine.errors import MalformedResultError

# ```json / ``` / ```JSON5 etc. at the very start
_LEADING_FENCE = re.compile(r"^```[A-Za-z0-9_+\-.]*[ \t]*\r?\n?")
_TRAILING_FENCE = re.compile(r"\r?\n?[ \t]*```$")
# "[1, 2,]" / "{"a": 1,\n}"
_TRAILING_COMMA = re.compile(r",\s*([}\]])")

PREVIEW_CHARS = 200


class ResultParser:
    """
    Turns raw provider text into a JSON object or array.

    Models often wrap JSON in a markdown fence or leave a trailing comma
    before a closing bracket; both are repaired. The comma repair only runs
    when the text does not already parse, so valid JSON is never rewritten.
    Anything else that is not strict JSON raises MalformedResultError.
    Re-sending the same request will not fix it, so callers treat it as
    terminal for the item.
    """

    def clean(self, raw_text: str) -> str:
        """Strip surrounding whitespace and a markdown fence."""
        text = raw_text.strip()
        text = _LEADING_FENCE.sub("", text, count=1)
        text = _TRAILING_FENCE.sub("", text, count=1)
        return text.strip()

    def repair(self, text: str) -> str:
        """Drop commas that directly precede a closing bracket or brace."""
        return _TRAILING_COMMA.sub(r"\1", text)

    def parse(self, raw_text: str | None) -> dict[str, Any] | list[Any]:
        if raw_text is None or not raw_text.strip():
            raise MalformedResultError("empty response")

        cleaned = self.clean(raw_text)
        try:
            value = json.loads(cleaned)
        except json.JSONDecodeError as e:
            try:
                value = json.loads(self.repair(cleaned))
            except json.JSONDecodeError:
                raise MalformedResultError(str(e), preview=_preview(raw_text)) from e

        if not isinstance(value, (dict, list)):
            raise MalformedResultError(
                f"expected a JSON object or array, got {type(value).__name__}",
                preview=_preview(raw_text),
            )
        return value


def _preview(raw_text: str) -> str:
    return raw_text[:PREVIEW_CHARS].replace("\n", "\\n")
