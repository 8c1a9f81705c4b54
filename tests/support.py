"""Shared fixtures: in-memory database, scripted router and seeding helpers."""

from __future__ import annotations

import unittest
from typing import Any

from feature_governance.config import Settings
from feature_governance.database.models import CodeBundle, FeatureProposal
from feature_governance.database.session import build_session_maker, create_engine, init_db, session_scope
from feature_governance.pipeline.collaborators import StaticRoleResolver
from feature_governance.schemas import ARTIFACT_PLACEHOLDERS, LifecycleStage, LLMMessage, LLMResponse


ADMINS = ("admin-1", "admin-2", "admin-3", "admin-4")
MEMBER = "member-1"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": "sqlite+aiosqlite://",
        "gateway_api_key": "",
        "default_required_approvals": 1,
        "admin_ids": list(ADMINS),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class ScriptedRouter:
    """Completion router returning scripted answers in order.

    An ``Exception`` instance in the script is raised instead of answered.
    """

    def __init__(self, *script: str | Exception) -> None:
        self.script = list(script)
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        messages: list[LLMMessage],
        provider: str | None = None,
        model: str | None = None,
        stream: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append(
            {"messages": messages, "provider": provider, "model": model, "temperature": temperature}
        )
        if not self.script:
            raise AssertionError("ScriptedRouter ran out of answers")
        answer = self.script.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return LLMResponse(content=answer, provider=provider or "scripted", model=model or "scripted-model")


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh in-memory SQLite database per test."""

    async def asyncSetUp(self) -> None:
        self.settings = make_settings()
        self.engine = create_engine(self.settings.database_url)
        await init_db(self.engine)
        self.session_maker = build_session_maker(self.engine)
        self.roles = StaticRoleResolver(ADMINS)

    async def asyncTearDown(self) -> None:
        await self.engine.dispose()

    async def add_proposal(
        self,
        stage: LifecycleStage = LifecycleStage.GENERATING,
        required_approvals: int = 1,
        approval_round: int = 0,
        with_bundle: bool = False,
        title: str = "Dark mode",
    ) -> str:
        async with session_scope(self.session_maker) as session:
            proposal = FeatureProposal(
                title=title,
                description="Switch themes by time of day",
                lifecycle_stage=stage.value,
                required_approvals=required_approvals,
                approval_round=approval_round,
            )
            session.add(proposal)
            await session.flush()
            if with_bundle:
                session.add(
                    CodeBundle(
                        proposal_id=proposal.id,
                        frontend="export const Toggle = () => null;",
                        backend=ARTIFACT_PLACEHOLDERS["backend"],
                        database="CREATE TABLE themes (id int);",
                        raw_response="...",
                        provider="scripted",
                        model="scripted-model",
                        generated_by=ADMINS[0],
                    )
                )
            return proposal.id

    async def fetch(self, model: type, ident: Any) -> Any:
        async with session_scope(self.session_maker) as session:
            return await session.get(model, ident)
