"""Administrator management of provider configurations.

Keys are stored as given and only ever leave this module masked.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from feature_governance.database.models import ProviderConfig, utc_now
from feature_governance.database.session import session_scope
from feature_governance.errors import InvalidRequest, ProviderConfigNotFound
from feature_governance.llm.registry import get_adapter_class, registered_providers
from feature_governance.llm.router import BUILTIN_PROVIDER
from feature_governance.pipeline.collaborators import RoleResolver, require_admin
from feature_governance.schemas import (
    ProviderCatalogEntry,
    ProviderConfigCreateRequest,
    ProviderConfigUpdateRequest,
    ProviderConfigView,
)


logger = logging.getLogger(__name__)


def mask_key(api_key: str | None) -> str | None:
    """Mask a credential for display, e.g. ``sk-...abcd``."""
    if not api_key:
        return None
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:3]}...{api_key[-4:]}"


def to_view(config: ProviderConfig) -> ProviderConfigView:
    return ProviderConfigView(
        id=config.id,
        provider=config.provider,
        display_name=config.display_name,
        api_key_masked=mask_key(config.api_key),
        model_defaults=dict(config.model_defaults or {}),
        is_active=config.is_active,
        is_default=config.is_default,
    )


class ProviderConfigManager:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], roles: RoleResolver):
        self._session_maker = session_maker
        self._roles = roles

    @staticmethod
    def catalog() -> list[ProviderCatalogEntry]:
        """Supported providers and their models."""
        entries = []
        for name in registered_providers():
            adapter_cls = get_adapter_class(name)
            entries.append(
                ProviderCatalogEntry(
                    provider=name,
                    default_model=adapter_cls.default_model,
                    available_models=list(adapter_cls.available_models),
                    supports_streaming=adapter_cls.supports_streaming,
                    requires_api_key=adapter_cls.requires_api_key,
                )
            )
        return entries

    async def _load(self, session: AsyncSession, provider: str) -> ProviderConfig:
        result = await session.execute(select(ProviderConfig).where(ProviderConfig.provider == provider))
        config = result.scalar_one_or_none()
        if config is None:
            raise ProviderConfigNotFound(f"No configuration for provider '{provider}'")
        return config

    async def list_configs(self, admin_id: str | None) -> list[ProviderConfigView]:
        await require_admin(self._roles, admin_id, "view provider configurations")
        async with session_scope(self._session_maker) as session:
            result = await session.execute(
                select(ProviderConfig).order_by(ProviderConfig.is_default.desc(), ProviderConfig.created_at)
            )
            return [to_view(c) for c in result.scalars().all()]

    async def add(self, admin_id: str | None, request: ProviderConfigCreateRequest) -> ProviderConfigView:
        """Add a provider config. The first config added becomes the default."""
        admin_id = await require_admin(self._roles, admin_id, "add provider configurations")
        if request.provider == BUILTIN_PROVIDER:
            raise InvalidRequest(f"'{BUILTIN_PROVIDER}' is configured through settings")
        adapter_cls = get_adapter_class(request.provider)
        if adapter_cls.requires_api_key and not request.api_key:
            raise InvalidRequest(f"Provider '{request.provider}' requires an API key")

        async with session_scope(self._session_maker) as session:
            existing = await session.execute(
                select(ProviderConfig).where(ProviderConfig.provider == request.provider)
            )
            if existing.scalar_one_or_none() is not None:
                raise InvalidRequest(f"Provider '{request.provider}' is already configured")
            has_any = (await session.execute(select(ProviderConfig.id).limit(1))).first() is not None

            config = ProviderConfig(
                provider=request.provider,
                display_name=request.display_name or request.provider.title(),
                api_key=request.api_key,
                model_defaults=request.model_defaults,
                is_active=True,
                is_default=not has_any,
                created_by=admin_id,
            )
            session.add(config)
            await session.flush()
            logger.info(f"Admin {admin_id} added provider config '{config.provider}' (default={config.is_default})")
            return to_view(config)

    async def update(
        self,
        admin_id: str | None,
        provider: str,
        request: ProviderConfigUpdateRequest,
    ) -> ProviderConfigView:
        """Rotate the key, toggle activity, change defaults or make it the default."""
        admin_id = await require_admin(self._roles, admin_id, "update provider configurations")

        async with session_scope(self._session_maker) as session:
            config = await self._load(session, provider)
            if request.api_key is not None:
                if not request.api_key:
                    raise InvalidRequest("API key cannot be empty")
                config.api_key = request.api_key
                logger.info(f"Admin {admin_id} rotated the key for provider '{provider}'")
            if request.model_defaults is not None:
                config.model_defaults = request.model_defaults
            if request.is_active is not None:
                config.is_active = request.is_active
                if not config.is_active:
                    config.is_default = False
            if request.is_default:
                if not config.is_active:
                    raise InvalidRequest(f"Provider '{provider}' must be active to become the default")
                await session.execute(
                    update(ProviderConfig)
                    .where(ProviderConfig.id != config.id)
                    .values(is_default=False)
                    .execution_options(synchronize_session="fetch")
                )
                config.is_default = True
            elif request.is_default is False:
                config.is_default = False

            config.updated_at = utc_now()
            session.add(config)
            logger.info(
                f"Admin {admin_id} updated provider config '{provider}' "
                f"(active={config.is_active}, default={config.is_default})"
            )
            return to_view(config)

    async def delete(self, admin_id: str | None, provider: str) -> None:
        admin_id = await require_admin(self._roles, admin_id, "delete provider configurations")
        async with session_scope(self._session_maker) as session:
            config = await self._load(session, provider)
            await session.delete(config)
        logger.info(f"Admin {admin_id} deleted provider config '{provider}'")
