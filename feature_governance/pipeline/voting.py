"""Advisory community voting.

Any authenticated member can vote approve, reject or abstain on a proposal
awaiting approval. One vote per member per proposal; voting again replaces
the earlier choice. Votes are shown next to the administrator quorum and
never count toward it.
"""

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from feature_governance.database.models import ProposalVote, utc_now
from feature_governance.database.session import session_scope
from feature_governance.errors import InvalidRequest
from feature_governance.pipeline.collaborators import require_identity
from feature_governance.pipeline.lifecycle import load_proposal, require_stage
from feature_governance.pipeline.locks import ProposalLocks
from feature_governance.schemas import LifecycleStage, VoteChoice, VoteSummary, VoteView


logger = logging.getLogger(__name__)


async def tally_votes(session: AsyncSession, proposal_id: str) -> VoteSummary:
    result = await session.execute(
        select(ProposalVote.vote, func.count())
        .where(ProposalVote.proposal_id == proposal_id)
        .group_by(ProposalVote.vote)
    )
    counts = {vote: int(n) for vote, n in result.all()}
    return VoteSummary(
        approve_count=counts.get(VoteChoice.APPROVE.value, 0),
        reject_count=counts.get(VoteChoice.REJECT.value, 0),
        abstain_count=counts.get(VoteChoice.ABSTAIN.value, 0),
        total_count=sum(counts.values()),
    )


class CommunityVoting:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        locks: ProposalLocks | None = None,
    ):
        self._session_maker = session_maker
        self._locks = locks or ProposalLocks()

    async def cast_vote(
        self,
        proposal_id: str,
        user_id: str | None,
        vote: VoteChoice | str,
        reason: str | None = None,
    ) -> VoteView:
        """Record or replace ``user_id``'s vote on a proposal pending approval.

        Raises:
            PermissionDenied: when no identity is given
            InvalidRequest: for an unknown vote value
            PipelineStateError: when the proposal is not pending approval
        """
        user_id = require_identity(user_id, "vote on proposals")
        try:
            choice = VoteChoice(vote)
        except ValueError as e:
            allowed = ", ".join(v.value for v in VoteChoice)
            raise InvalidRequest(f"Unknown vote '{vote}' (expected one of: {allowed})") from e
        reason = reason.strip() if reason and reason.strip() else None

        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id)
                require_stage(proposal, (LifecycleStage.PENDING_APPROVAL,), "vote")

                existing = await session.execute(
                    select(ProposalVote)
                    .where(ProposalVote.proposal_id == proposal.id)
                    .where(ProposalVote.user_id == user_id)
                )
                row = existing.scalar_one_or_none()
                if row is None:
                    row = ProposalVote(proposal_id=proposal.id, user_id=user_id, vote=choice.value, reason=reason)
                else:
                    row.vote = choice.value
                    row.reason = reason
                    row.updated_at = utc_now()
                session.add(row)
                await session.flush()

                summary = await tally_votes(session, proposal.id)
                logger.info(
                    f"Proposal {proposal_id}: {user_id} voted {choice.value} "
                    f"({summary.approve_count} approve / {summary.reject_count} reject / {summary.total_count} total)"
                )
                return VoteView(
                    proposal_id=proposal.id,
                    user_id=user_id,
                    vote=choice,
                    reason=row.reason,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                    summary=summary,
                )

    async def summary(self, proposal_id: str) -> VoteSummary:
        async with session_scope(self._session_maker) as session:
            await load_proposal(session, proposal_id)
            return await tally_votes(session, proposal_id)
