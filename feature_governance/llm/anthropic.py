"""Anthropic Messages API adapter.

The system prompt travels in a separate ``system`` field instead of the
message list, auth uses ``x-api-key`` and the text lives at
``content[0].text``.
"""

from __future__ import annotations

from typing import Any

from feature_governance.llm.base import LLMAdapter
from feature_governance.llm.registry import register_adapter
from feature_governance.schemas import LLMMessage


ANTHROPIC_VERSION = "2023-06-01"


@register_adapter
class AnthropicAdapter(LLMAdapter):
    provider_name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    default_model = "claude-3-5-sonnet-20241022"
    available_models = (
        "claude-3-5-sonnet-20241022",
        "claude-3-opus-20240229",
        "claude-3-haiku-20240307",
    )

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/messages"

    def _auth_headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key or "", "anthropic-version": ANTHROPIC_VERSION}

    def _build_request(
        self,
        messages: list[LLMMessage],
        model: str,
        stream: bool,
        temperature: float | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [m.model_dump() for m in messages if m.role != "system"],
            "stream": stream,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    def _parse_response(self, data: dict[str, Any]) -> str:
        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text")

    def _parse_finish_reason(self, data: Any) -> str | None:
        return data.get("stop_reason") if isinstance(data, dict) else None
