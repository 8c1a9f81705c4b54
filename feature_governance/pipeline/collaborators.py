"""Interfaces to collaborators that live outside the pipeline.

- Completion routing (the provider adapter layer)
- Role resolution (user roles are stored elsewhere)
- Discussion data (forum storage is owned by another service)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

from feature_governance.errors import PermissionDenied
from feature_governance.schemas import DiscussionItem, LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


class CompletionRouter(Protocol):
    """Anything that can perform a routed completion call."""

    async def complete(
        self,
        messages: list[LLMMessage],
        provider: str | None = None,
        model: str | None = None,
        stream: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        ...


@runtime_checkable
class RoleResolver(Protocol):
    async def is_admin(self, actor_id: str) -> bool:
        ...


@runtime_checkable
class DiscussionReader(Protocol):
    async def recent_items(self, since: datetime, limit: int) -> list[DiscussionItem]:
        """Return items created at or after ``since``, newest first."""
        ...


class StaticRoleResolver:
    """Role resolver backed by a fixed set of administrator ids."""

    def __init__(self, admin_ids: Iterable[str]):
        self._admin_ids = frozenset(a for a in admin_ids if a)

    async def is_admin(self, actor_id: str) -> bool:
        return actor_id in self._admin_ids


class InMemoryDiscussionReader:
    def __init__(self, items: Iterable[DiscussionItem] = ()):
        self.items = list(items)

    async def recent_items(self, since: datetime, limit: int) -> list[DiscussionItem]:
        recent = [i for i in self.items if _as_utc(i.created_at) >= _as_utc(since)]
        recent.sort(key=lambda i: _as_utc(i.created_at), reverse=True)
        return recent[:limit]


class JsonFileDiscussionReader(InMemoryDiscussionReader):
    """Reads a JSON export (a list of thread objects) of the forum."""

    def __init__(self, path: str | Path):
        path = Path(path)
        with path.open(encoding="utf-8") as fh:
            raw = json.load(fh)
        super().__init__(DiscussionItem.model_validate(item) for item in raw)
        logger.info(f"Loaded {len(self.items)} discussion items from {path}")


def _as_utc(value: datetime) -> datetime:
    # Exports mix aware and naive timestamps; naive ones are taken as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def require_admin(roles: RoleResolver, actor_id: str | None, action: str) -> str:
    """Resolve ``actor_id`` and check the administrator role.

    Raises:
        PermissionDenied: when no identity is given or it is not an admin
    """
    if not actor_id or not await roles.is_admin(actor_id):
        logger.warning(f"Denied {action} for actor {actor_id!r}: administrator role required")
        raise PermissionDenied(f"Administrator role required to {action}")
    return actor_id


def require_identity(actor_id: str | None, action: str) -> str:
    if not actor_id:
        raise PermissionDenied(f"An authenticated identity is required to {action}")
    return actor_id
