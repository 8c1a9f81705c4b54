"""Platform-wide governance configuration (the approval threshold).

The configuration is explicit state injected into the stages that need it,
not a process global. Changing the threshold cascades to every proposal
still in a threshold-tracking stage.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col, select

from feature_governance.config import Settings, get_settings
from feature_governance.database.models import GOVERNANCE_CONFIG_ID, FeatureProposal, GovernanceConfig, utc_now
from feature_governance.database.session import session_scope
from feature_governance.errors import InvalidRequest
from feature_governance.pipeline.collaborators import RoleResolver, require_admin
from feature_governance.pipeline.lifecycle import apply_transition, count_approvals
from feature_governance.schemas import THRESHOLD_TRACKING_STAGES, GovernanceView, LifecycleStage


logger = logging.getLogger(__name__)

MIN_APPROVALS = 1
MAX_APPROVALS = 10


class GovernanceStore:
    """Reads and updates the governance singleton."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        roles: RoleResolver,
        settings: Settings | None = None,
    ):
        self._session_maker = session_maker
        self._roles = roles
        self._settings = settings or get_settings()

    async def current(self, session: AsyncSession, for_update: bool = False) -> GovernanceConfig:
        """Return the singleton row, creating it from settings if missing."""
        statement = select(GovernanceConfig).where(GovernanceConfig.id == GOVERNANCE_CONFIG_ID)
        if for_update:
            statement = statement.with_for_update()
        config = (await session.execute(statement)).scalar_one_or_none()
        if config is None:
            config = GovernanceConfig(
                id=GOVERNANCE_CONFIG_ID,
                required_approvals=self._settings.default_required_approvals,
            )
            session.add(config)
            await session.flush()
        return config

    async def required_approvals(self, session: AsyncSession) -> int:
        return (await self.current(session)).required_approvals

    async def get(self) -> GovernanceView:
        async with session_scope(self._session_maker) as session:
            config = await self.current(session)
            return GovernanceView(
                required_approvals=config.required_approvals,
                updated_by=config.updated_by,
                updated_at=config.updated_at,
            )

    async def set_required_approvals(self, admin_id: str | None, required_approvals: int) -> GovernanceView:
        """Update the threshold and cascade it to in-flight proposals.

        Proposals already approved or beyond keep their recorded quorum. A
        pending proposal whose recorded approvals already meet a lowered
        threshold moves to ``approved``.
        """
        admin_id = await require_admin(self._roles, admin_id, "change governance settings")
        if (
            isinstance(required_approvals, bool)
            or not isinstance(required_approvals, int)
            or not MIN_APPROVALS <= required_approvals <= MAX_APPROVALS
        ):
            raise InvalidRequest(
                f"required_approvals must be an integer between {MIN_APPROVALS} and {MAX_APPROVALS}"
            )

        now = utc_now()
        async with session_scope(self._session_maker) as session:
            config = await self.current(session, for_update=True)
            config.required_approvals = required_approvals
            config.updated_by = admin_id
            config.updated_at = now
            session.add(config)

            result = await session.execute(
                update(FeatureProposal)
                .where(col(FeatureProposal.lifecycle_stage).in_([s.value for s in THRESHOLD_TRACKING_STAGES]))
                .values(required_approvals=required_approvals, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
            cascaded = result.rowcount or 0

            pending = await session.execute(
                select(FeatureProposal)
                .where(FeatureProposal.lifecycle_stage == LifecycleStage.PENDING_APPROVAL.value)
                .with_for_update()
            )
            approved_ids = []
            for proposal in pending.scalars().all():
                if await count_approvals(session, proposal) >= proposal.required_approvals:
                    apply_transition(proposal, LifecycleStage.APPROVED, admin_id)
                    session.add(proposal)
                    approved_ids.append(proposal.id)

            logger.info(
                f"Admin {admin_id} set required approvals to {required_approvals}; "
                f"{cascaded} in-flight proposals updated, {len(approved_ids)} reached quorum"
            )
            return GovernanceView(
                required_approvals=required_approvals,
                updated_by=admin_id,
                updated_at=now,
                cascaded_count=cascaded,
                approved_ids=approved_ids,
            )
