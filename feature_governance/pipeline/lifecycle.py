"""Proposal lifecycle state machine.

Graph structure:
generating → validating → validation_failed | pending_approval → approved → implemented
                 ↑                  ↓
                 └──── regenerate ──┘
rejected is reachable from every non-terminal stage; rejected and implemented
are terminal. Every stage component moves proposals through ``apply_transition``
so no edge outside this table can be taken.
"""

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from feature_governance.database.models import FeatureProposal, ProposalApproval, utc_now
from feature_governance.errors import PipelineStateError, ProposalNotFound
from feature_governance.schemas import TERMINAL_STAGES, LifecycleStage


logger = logging.getLogger(__name__)

S = LifecycleStage

TRANSITIONS: dict[LifecycleStage, frozenset[LifecycleStage]] = {
    S.GENERATING: frozenset({S.VALIDATING, S.REJECTED}),
    S.VALIDATING: frozenset({S.VALIDATING, S.VALIDATION_FAILED, S.PENDING_APPROVAL, S.REJECTED}),
    S.VALIDATION_FAILED: frozenset({S.VALIDATING, S.REJECTED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.REJECTED}),
    S.APPROVED: frozenset({S.IMPLEMENTED, S.REJECTED}),
    S.REJECTED: frozenset(),
    S.IMPLEMENTED: frozenset(),
}


def stage_of(proposal: FeatureProposal) -> LifecycleStage:
    return LifecycleStage(proposal.lifecycle_stage)


def is_terminal(proposal: FeatureProposal) -> bool:
    return stage_of(proposal) in TERMINAL_STAGES


def can_transition(current: LifecycleStage, target: LifecycleStage) -> bool:
    return target in TRANSITIONS[current]


def require_stage(proposal: FeatureProposal, allowed: tuple[LifecycleStage, ...], action: str) -> None:
    current = stage_of(proposal)
    if current not in allowed:
        expected = ", ".join(s.value for s in allowed)
        raise PipelineStateError(
            f"Cannot {action}: proposal {proposal.id} is '{current.value}' (expected one of: {expected})"
        )


def apply_transition(
    proposal: FeatureProposal,
    target: LifecycleStage,
    actor_id: str,
    force: bool = False,
) -> None:
    """Move ``proposal`` to ``target`` and stamp the acting identity.

    ``force`` is reserved for explicit administrator overrides and still
    refuses to leave a terminal stage.
    """
    current = stage_of(proposal)
    if is_terminal(proposal):
        raise PipelineStateError(f"Proposal {proposal.id} is '{current.value}', which is terminal")
    if not force and not can_transition(current, target):
        raise PipelineStateError(
            f"Proposal {proposal.id} cannot move from '{current.value}' to '{target.value}'"
        )

    now = utc_now()
    proposal.lifecycle_stage = target.value
    proposal.reviewed_by = actor_id
    proposal.reviewed_at = now
    proposal.updated_at = now
    logger.info(f"Proposal {proposal.id}: {current.value} -> {target.value} by {actor_id}")


def enter_pending_approval(proposal: FeatureProposal, required_approvals: int, actor_id: str, force: bool = False) -> None:
    """Transition into ``pending_approval``, snapshotting the threshold.

    Each entry opens a new approval round; approvals from earlier rounds no
    longer count.
    """
    apply_transition(proposal, LifecycleStage.PENDING_APPROVAL, actor_id, force=force)
    proposal.required_approvals = required_approvals
    proposal.approval_round = (proposal.approval_round or 0) + 1


async def load_proposal(session: AsyncSession, proposal_id: str, for_update: bool = False) -> FeatureProposal:
    statement = select(FeatureProposal).where(FeatureProposal.id == proposal_id)
    if for_update:
        statement = statement.with_for_update()
    result = await session.execute(statement)
    proposal = result.scalar_one_or_none()
    if proposal is None:
        raise ProposalNotFound(f"Proposal {proposal_id} not found")
    return proposal


async def count_approvals(session: AsyncSession, proposal: FeatureProposal) -> int:
    """Distinct administrators who approved in the current round."""
    result = await session.execute(
        select(func.count(func.distinct(ProposalApproval.admin_id)))
        .where(ProposalApproval.proposal_id == proposal.id)
        .where(ProposalApproval.approval_round == proposal.approval_round)
    )
    return int(result.scalar_one())
