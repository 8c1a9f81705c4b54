"""Google Generative Language adapter.

Model name and API key both travel in the URL, roles map to ``user`` /
``model``, and the endpoint is called in blocking mode only.
"""

from __future__ import annotations

from typing import Any

from feature_governance.llm.base import LLMAdapter
from feature_governance.llm.registry import register_adapter
from feature_governance.schemas import LLMMessage


@register_adapter
class GoogleAdapter(LLMAdapter):
    provider_name = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta/models"
    default_model = "gemini-1.5-flash"
    available_models = ("gemini-1.5-pro", "gemini-1.5-flash", "gemini-1.0-pro")
    supports_streaming = False

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/{model}:generateContent"

    def _endpoint_params(self) -> dict[str, str]:
        return {"key": self.api_key or ""}

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
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [{"text": m.content}],
                }
                for m in messages
            ],
        }
        config: dict[str, Any] = {"maxOutputTokens": max_tokens}
        if temperature is not None:
            config["temperature"] = temperature
        payload["generationConfig"] = config
        return payload

    def _parse_response(self, data: dict[str, Any]) -> str:
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or [{}]
        return parts[0].get("text") or ""

    def _parse_usage(self, data: Any) -> dict[str, Any]:
        if isinstance(data, dict) and isinstance(data.get("usageMetadata"), dict):
            return data["usageMetadata"]
        return {}
