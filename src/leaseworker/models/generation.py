"""Generation request model."""

from typing import Any

from pydantic import BaseModel, Field


class GenerationRequest(BaseModel):
    """Provider-neutral request: model, chat messages and sampling parameters."""

    model: str
    messages: list[dict[str, Any]]
    sampling: dict[str, Any] = Field(default_factory=dict)
