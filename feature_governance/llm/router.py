"""Provider router: selects a provider and performs the completion call.

Selection order:
1. Explicitly requested provider (must be configured and active)
2. Platform default active provider config
3. Built-in gateway provider, keyed from settings

Unknown or inactive providers fail with ``ConfigurationError``; nothing is
ever silently substituted, and no call is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from feature_governance.config import Settings, get_settings
from feature_governance.database.models import ProviderConfig
from feature_governance.errors import ConfigurationError
from feature_governance.llm.base import LLMAdapter
from feature_governance.llm.registry import get_adapter_class, is_supported
from feature_governance.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)

BUILTIN_PROVIDER = "gateway"


@dataclass
class ResolvedProvider:
    """A selected provider with its credential and defaults."""

    provider: str
    api_key: str | None = field(default=None, repr=False)
    model_defaults: dict[str, Any] = field(default_factory=dict)


class ProviderRouter:
    """Routes completion requests to the selected provider adapter."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._session_maker = session_maker
        self._settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    async def _active_configs(self) -> list[ProviderConfig]:
        async with self._session_maker() as session:
            result = await session.execute(
                select(ProviderConfig)
                .where(ProviderConfig.is_active == True)  # noqa: E712
                .order_by(ProviderConfig.is_default.desc(), ProviderConfig.created_at, ProviderConfig.id)
            )
            return list(result.scalars().all())

    async def _config_for(self, provider: str) -> ProviderConfig | None:
        async with self._session_maker() as session:
            result = await session.execute(
                select(ProviderConfig).where(ProviderConfig.provider == provider)
            )
            return result.scalar_one_or_none()

    def _builtin(self) -> ResolvedProvider:
        if not self._settings.gateway_api_key:
            raise ConfigurationError("Built-in provider credential (GATEWAY_API_KEY) is not configured")
        return ResolvedProvider(
            provider=BUILTIN_PROVIDER,
            api_key=self._settings.gateway_api_key,
            model_defaults={
                "base_url": self._settings.gateway_base_url,
                "model": self._settings.gateway_model,
            },
        )

    @staticmethod
    def _from_config(config: ProviderConfig) -> ResolvedProvider:
        return ResolvedProvider(
            provider=config.provider,
            api_key=config.api_key,
            model_defaults=dict(config.model_defaults or {}),
        )

    async def resolve(self, provider: str | None = None) -> ResolvedProvider:
        """Select the provider for a call."""
        if provider:
            if provider == BUILTIN_PROVIDER:
                return self._builtin()
            config = await self._config_for(provider)
            if config is None:
                if is_supported(provider):
                    raise ConfigurationError(f"Provider '{provider}' is not configured")
                raise ConfigurationError(f"Provider '{provider}' is not supported")
            if not config.is_active:
                raise ConfigurationError(f"Provider '{provider}' is not active")
            return self._from_config(config)

        configs = await self._active_configs()
        if configs:
            return self._from_config(configs[0])
        return self._builtin()

    def build_adapter(self, resolved: ResolvedProvider) -> LLMAdapter:
        adapter_cls = get_adapter_class(resolved.provider)
        defaults = resolved.model_defaults
        return adapter_cls(
            client=self._client,
            api_key=resolved.api_key,
            base_url=defaults.get("base_url"),
            model=defaults.get("model"),
            timeout=self._settings.provider_timeout_seconds,
            max_tokens=self._settings.provider_max_tokens,
        )

    async def complete(
        self,
        messages: list[LLMMessage],
        provider: str | None = None,
        model: str | None = None,
        stream: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Route a completion request.

        Args:
            messages: Ordered conversation messages
            provider: Explicit provider name; default selection when None
            model: Model override; the provider default when None
            stream: Pass the upstream stream through when the adapter can
            temperature: Sampling temperature, provider default when None
            max_tokens: Response token cap, settings default when None

        Returns:
            LLMResponse with ``content`` or, when streaming, ``stream``
        """
        resolved = await self.resolve(provider)
        adapter = self.build_adapter(resolved)
        logger.info(f"Routing completion to {resolved.provider}/{model or adapter.model}")
        return await adapter.chat_completion(
            messages=messages,
            model=model,
            stream=stream,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def close(self) -> None:
        """Close the HTTP client if this router created it."""
        if self._owns_client:
            await self._client.aclose()
