"""Registry of adapter classes keyed by provider name.

Adding a provider means adding one adapter class decorated with
``@register_adapter``; selection never branches on provider names.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from feature_governance.errors import ConfigurationError

if TYPE_CHECKING:
    from feature_governance.llm.base import LLMAdapter


_ADAPTERS: dict[str, type["LLMAdapter"]] = {}


def register_adapter(cls: type["LLMAdapter"]) -> type["LLMAdapter"]:
    if not cls.provider_name:
        raise ValueError(f"{cls.__name__} does not declare a provider_name")
    _ADAPTERS[cls.provider_name] = cls
    return cls


def get_adapter_class(provider: str) -> type["LLMAdapter"]:
    try:
        return _ADAPTERS[provider]
    except KeyError:
        raise ConfigurationError(f"Provider '{provider}' is not supported") from None


def is_supported(provider: str) -> bool:
    return provider in _ADAPTERS


def registered_providers() -> list[str]:
    return sorted(_ADAPTERS)
