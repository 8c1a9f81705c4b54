"""Provider adapter layer."""

from feature_governance.llm.base import LLMAdapter, map_http_error
from feature_governance.llm.registry import get_adapter_class, is_supported, registered_providers

# Importing the families registers their adapters.
from feature_governance.llm import anthropic, chat_completions, google, ollama  # noqa: F401
from feature_governance.llm.router import ProviderRouter, ResolvedProvider

__all__ = [
    "LLMAdapter",
    "ProviderRouter",
    "ResolvedProvider",
    "get_adapter_class",
    "is_supported",
    "map_http_error",
    "registered_providers",
]
