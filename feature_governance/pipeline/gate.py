"""Approval / quorum gate.

Administrators move validated proposals to ``approved`` by quorum, reject
them from any non-terminal stage, acknowledge deployment, or override the
stage explicitly.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from feature_governance.database.models import FeatureProposal, ProposalApproval, utc_now
from feature_governance.database.session import session_scope
from feature_governance.errors import InvalidRequest, PipelineStateError
from feature_governance.pipeline.collaborators import RoleResolver, require_admin
from feature_governance.pipeline.governance import GovernanceStore
from feature_governance.pipeline.lifecycle import (
    apply_transition,
    count_approvals,
    enter_pending_approval,
    load_proposal,
    stage_of,
)
from feature_governance.pipeline.locks import ProposalLocks
from feature_governance.schemas import ApprovalResult, LifecycleStage


logger = logging.getLogger(__name__)

# Reaching these requires quorum or a deployment acknowledgment.
NON_OVERRIDABLE_TARGETS = frozenset({LifecycleStage.APPROVED, LifecycleStage.IMPLEMENTED})


class ApprovalGate:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        roles: RoleResolver,
        governance: GovernanceStore,
        locks: ProposalLocks | None = None,
    ):
        self._session_maker = session_maker
        self._roles = roles
        self._governance = governance
        self._locks = locks or ProposalLocks()

    async def record_approval(
        self,
        proposal_id: str,
        admin_id: str | None,
        comments: str | None = None,
    ) -> ApprovalResult:
        """Record one administrator approval and apply the quorum rule.

        Approvals are idempotent per administrator and round. The count and
        the transition happen under the proposal lock and a row lock, so
        concurrent approvals are all counted and the transition fires once.
        """
        admin_id = await require_admin(self._roles, admin_id, "approve proposals")

        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id, for_update=True)
                stage = stage_of(proposal)

                if stage == LifecycleStage.APPROVED:
                    logger.info(f"Approval by {admin_id} on already-approved proposal {proposal_id} ignored")
                    return ApprovalResult(
                        proposal_id=proposal.id,
                        lifecycle_stage=stage,
                        approvals_count=await count_approvals(session, proposal),
                        required_approvals=proposal.required_approvals,
                        counted=False,
                        transitioned=False,
                    )
                if stage != LifecycleStage.PENDING_APPROVAL:
                    raise PipelineStateError(
                        f"Cannot approve proposal {proposal_id}: it is '{stage.value}', not pending approval"
                    )

                existing = await session.execute(
                    select(ProposalApproval)
                    .where(ProposalApproval.proposal_id == proposal.id)
                    .where(ProposalApproval.admin_id == admin_id)
                    .where(ProposalApproval.approval_round == proposal.approval_round)
                )
                counted = existing.scalar_one_or_none() is None
                if counted:
                    session.add(
                        ProposalApproval(
                            proposal_id=proposal.id,
                            admin_id=admin_id,
                            approval_round=proposal.approval_round,
                            comments=comments,
                        )
                    )
                    await session.flush()

                approvals = await count_approvals(session, proposal)
                transitioned = approvals >= proposal.required_approvals
                if transitioned:
                    apply_transition(proposal, LifecycleStage.APPROVED, admin_id)
                else:
                    proposal.updated_at = utc_now()
                session.add(proposal)

                logger.info(
                    f"Proposal {proposal_id}: {approvals}/{proposal.required_approvals} approvals "
                    f"(admin {admin_id}, counted={counted})"
                )
                return ApprovalResult(
                    proposal_id=proposal.id,
                    lifecycle_stage=stage_of(proposal),
                    approvals_count=approvals,
                    required_approvals=proposal.required_approvals,
                    counted=counted,
                    transitioned=transitioned,
                )

    async def record_rejection(self, proposal_id: str, admin_id: str | None, reason: str) -> FeatureProposal:
        """Reject a proposal from any non-terminal stage. A reason is mandatory."""
        admin_id = await require_admin(self._roles, admin_id, "reject proposals")
        if not reason or not reason.strip():
            raise InvalidRequest("A rejection reason is required")

        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id, for_update=True)
                apply_transition(proposal, LifecycleStage.REJECTED, admin_id)
                proposal.review_notes = reason.strip()
                session.add(proposal)
        return proposal

    async def mark_implemented(self, proposal_id: str, admin_id: str | None, notes: str | None = None) -> FeatureProposal:
        """Acknowledge that an approved change has been deployed.

        Deployment itself is not verified.
        """
        admin_id = await require_admin(self._roles, admin_id, "mark proposals implemented")

        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id, for_update=True)
                apply_transition(proposal, LifecycleStage.IMPLEMENTED, admin_id)
                if notes:
                    proposal.review_notes = notes
                session.add(proposal)
        return proposal

    async def override_stage(
        self,
        proposal_id: str,
        admin_id: str | None,
        stage: LifecycleStage | str,
        reason: str,
    ) -> FeatureProposal:
        """Explicitly move a proposal outside the normal edges.

        Terminal stages cannot be left, and approved/implemented can only be
        reached through quorum and acknowledgment.
        """
        admin_id = await require_admin(self._roles, admin_id, "override proposal stages")
        target = LifecycleStage(stage)
        if target in NON_OVERRIDABLE_TARGETS:
            raise InvalidRequest(f"Stage '{target.value}' cannot be set by override")
        if not reason or not reason.strip():
            raise InvalidRequest("An override reason is required")

        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id, for_update=True)
                if stage_of(proposal) == target:
                    raise PipelineStateError(f"Proposal {proposal_id} is already '{target.value}'")
                if target == LifecycleStage.PENDING_APPROVAL:
                    required = await self._governance.required_approvals(session)
                    enter_pending_approval(proposal, required, admin_id, force=True)
                else:
                    apply_transition(proposal, target, admin_id, force=True)
                proposal.review_notes = f"Stage override: {reason.strip()}"
                session.add(proposal)
                logger.warning(f"Admin {admin_id} overrode proposal {proposal_id} to '{target.value}'")
        return proposal

    async def approvals(self, proposal_id: str) -> list[ProposalApproval]:
        """Approvals recorded in the proposal's current round."""
        async with session_scope(self._session_maker) as session:
            proposal = await load_proposal(session, proposal_id)
            result = await session.execute(
                select(ProposalApproval)
                .where(ProposalApproval.proposal_id == proposal.id)
                .where(ProposalApproval.approval_round == proposal.approval_round)
                .order_by(ProposalApproval.created_at)
            )
            return list(result.scalars().all())
