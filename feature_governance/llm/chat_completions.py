"""Adapters for providers speaking the standard chat-completions shape.

Request: ``{"model", "messages", "stream", "max_tokens"}`` POSTed to
``{base_url}/chat/completions`` with a bearer token. Response text lives at
``choices[0].message.content``. Providers in this family differ only in base
URL and models.
"""

from __future__ import annotations

from typing import Any

from feature_governance.llm.base import LLMAdapter
from feature_governance.llm.registry import register_adapter
from feature_governance.schemas import LLMMessage


class ChatCompletionsAdapter(LLMAdapter):
    """Base adapter for OpenAI-compatible endpoints."""

    def _endpoint(self, model: str) -> str:
        return f"{self.base_url}/chat/completions"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _build_request(
        self,
        messages: list[LLMMessage],
        model: str,
        stream: bool,
        temperature: float | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "stream": stream,
            "max_tokens": max_tokens,
        }
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    def _parse_response(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    def _parse_finish_reason(self, data: Any) -> str | None:
        if isinstance(data, dict):
            choices = data.get("choices") or [{}]
            return choices[0].get("finish_reason")
        return None


@register_adapter
class GatewayAdapter(ChatCompletionsAdapter):
    """Built-in first-party gateway; credential comes from settings."""

    provider_name = "gateway"
    default_base_url = "https://ai.gateway.lovable.dev/v1"
    default_model = "google/gemini-3-flash-preview"
    available_models = (
        "google/gemini-3-flash-preview",
        "google/gemini-2.5-pro",
        "openai/gpt-5",
        "openai/gpt-5-mini",
    )


@register_adapter
class OpenAIAdapter(ChatCompletionsAdapter):
    provider_name = "openai"
    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o"
    available_models = ("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "o1-preview", "o1-mini")


@register_adapter
class GroqAdapter(ChatCompletionsAdapter):
    provider_name = "groq"
    default_base_url = "https://api.groq.com/openai/v1"
    default_model = "llama-3.3-70b-versatile"
    available_models = ("llama-3.3-70b-versatile", "llama-3.1-8b-instant", "mixtral-8x7b-32768")


@register_adapter
class MistralAdapter(ChatCompletionsAdapter):
    provider_name = "mistral"
    default_base_url = "https://api.mistral.ai/v1"
    default_model = "mistral-large-latest"
    available_models = ("mistral-large-latest", "mistral-medium-latest", "mistral-small-latest")


@register_adapter
class DeepSeekAdapter(ChatCompletionsAdapter):
    """DeepSeek (V3 chat, R1 reasoner)."""

    provider_name = "deepseek"
    default_base_url = "https://api.deepseek.com"
    default_model = "deepseek-chat"
    available_models = ("deepseek-chat", "deepseek-reasoner")


@register_adapter
class KimiAdapter(ChatCompletionsAdapter):
    """Kimi/Moonshot."""

    provider_name = "kimi"
    default_base_url = "https://api.moonshot.cn/v1"
    default_model = "moonshot-v1-32k"
    available_models = ("moonshot-v1-8k", "moonshot-v1-32k", "moonshot-v1-128k")
