"""Ollama adapter for self-hosted models (no key, no streaming)."""

from __future__ import annotations

from typing import Any

from feature_governance.llm.base import LLMAdapter
from feature_governance.llm.registry import register_adapter
from feature_governance.schemas import LLMMessage


@register_adapter
class OllamaAdapter(LLMAdapter):
    provider_name = "ollama"
    default_base_url = "http://localhost:11434"
    default_model = "llama3.2"
    available_models = ("llama3.2", "codellama", "mistral", "deepseek-coder", "phi3")
    supports_streaming = False
    requires_api_key = False

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/api/chat"

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def _build_request(
        self,
        messages: list[LLMMessage],
        model: str,
        stream: bool,
        temperature: float | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"num_predict": max_tokens}
        if temperature is not None:
            options["temperature"] = temperature
        return {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "stream": False,
            "options": options,
        }

    def _parse_response(self, data: dict[str, Any]) -> str:
        return (data.get("message") or {}).get("content") or ""

    def _parse_finish_reason(self, data: Any) -> str | None:
        return data.get("done_reason") if isinstance(data, dict) else None
