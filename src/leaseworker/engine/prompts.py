"""Prompt construction from work item payloads."""

import json
from typing import Any, Optional

from leaseworker.models import GenerationRequest, WorkItem

PAYLOAD_PLACEHOLDER = "{payload}"


class PromptBuilder:
    """Renders one user message per item from a template containing ``{payload}``."""

    def __init__(
        self,
        model: str,
        template: str,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
    ):
        if PAYLOAD_PLACEHOLDER not in template:
            raise ValueError(f"prompt template must contain {PAYLOAD_PLACEHOLDER}")
        self.model = model
        self.template = template
        self.temperature = temperature
        self.system_prompt = system_prompt

    def render_payload(self, payload: Any) -> str:
        if isinstance(payload, str):
            return payload
        return json.dumps(payload, ensure_ascii=False)

    def build(self, item: WorkItem) -> GenerationRequest:
        # str.replace, not str.format: templates routinely contain JSON braces
        content = self.template.replace(PAYLOAD_PLACEHOLDER, self.render_payload(item.payload))

        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": content})

        sampling: dict[str, Any] = {}
        if self.temperature is not None:
            sampling["temperature"] = self.temperature

        return GenerationRequest(model=self.model, messages=messages, sampling=sampling)
