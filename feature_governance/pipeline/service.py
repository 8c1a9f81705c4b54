"""Facade wiring the pipeline components to one set of collaborators.

Outer surfaces (the FastAPI app, the CLI) talk to ``GovernancePipeline``
only; stage components never see HTTP or terminal concerns.
"""

from __future__ import annotations

import logging

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col, select

from feature_governance.config import Settings, get_settings
from feature_governance.database.models import CodeBundle, CodeValidation, FeatureProposal
from feature_governance.database.session import get_session_maker, session_scope
from feature_governance.errors import InvalidRequest
from feature_governance.llm.router import ProviderRouter
from feature_governance.pipeline.codegen import CodeGenerator
from feature_governance.pipeline.collaborators import (
    CompletionRouter,
    DiscussionReader,
    InMemoryDiscussionReader,
    RoleResolver,
    StaticRoleResolver,
    require_admin,
    require_identity,
)
from feature_governance.pipeline.gate import ApprovalGate
from feature_governance.pipeline.governance import GovernanceStore
from feature_governance.pipeline.lifecycle import count_approvals, load_proposal
from feature_governance.pipeline.locks import ProposalLocks
from feature_governance.pipeline.providers import ProviderConfigManager
from feature_governance.pipeline.synthesizer import ProposalSynthesizer, normalize_candidate
from feature_governance.pipeline.validation import CodeValidator
from feature_governance.pipeline.voting import CommunityVoting, tally_votes
from feature_governance.pipeline.workflow import DeliveryState, DeliveryWorkflow
from feature_governance.schemas import (
    CodeBundleView,
    LifecycleStage,
    LLMMessage,
    LLMResponse,
    ProposalListResponse,
    ProposalView,
    SynthesisSummary,
    ValidationRecordView,
    VoteSummary,
    VoteView,
)


logger = logging.getLogger(__name__)


class GovernancePipeline:
    """All pipeline operations behind one object.

    Args:
        session_maker: Async session factory for the pipeline tables
        router: Completion router; a ``ProviderRouter`` is built when omitted
        roles: Administrator role resolver; defaults to ``settings.admin_ids``
        reader: Discussion data reader; defaults to an empty reader
        settings: Application settings
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        router: CompletionRouter | None = None,
        roles: RoleResolver | None = None,
        reader: DiscussionReader | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_maker = session_maker or get_session_maker()
        self.router = router or ProviderRouter(self.session_maker, self.settings)
        self.roles = roles or StaticRoleResolver(self.settings.admin_ids)
        self.reader = reader or InMemoryDiscussionReader()

        locks = ProposalLocks()
        self.governance = GovernanceStore(self.session_maker, self.roles, self.settings)
        self.synthesizer = ProposalSynthesizer(
            self.session_maker, self.router, self.reader, self.governance, self.settings
        )
        self.generator = CodeGenerator(self.session_maker, self.router, self.roles, locks)
        self.validator = CodeValidator(self.session_maker, self.router, self.governance, locks)
        self.gate = ApprovalGate(self.session_maker, self.roles, self.governance, locks)
        self.voting = CommunityVoting(self.session_maker, locks)
        self.providers = ProviderConfigManager(self.session_maker, self.roles)
        self.workflow = DeliveryWorkflow(self.generator, self.validator)

    async def close(self) -> None:
        if isinstance(self.router, ProviderRouter):
            await self.router.close()

    # =========================================================================
    # Signal ingestion
    # =========================================================================

    async def synthesize_proposals(
        self,
        days: int | None = None,
        max_items: int | None = None,
        dry_run: bool = False,
        actor_id: str | None = None,
        provider: str | None = None,
        model: str | None = None,
    ) -> SynthesisSummary:
        return await self.synthesizer.synthesize(
            days=days,
            max_items=max_items,
            dry_run=dry_run,
            actor_id=actor_id,
            provider=provider,
            model=model,
        )

    async def create_proposal(
        self,
        actor_id: str | None,
        title: str,
        description: str,
        category: str | None = None,
        priority: str | None = None,
    ) -> ProposalView:
        """Manual proposal entry by any authenticated identity."""
        actor_id = require_identity(actor_id, "create proposals")
        draft = normalize_candidate(
            {"title": title, "description": description, "category": category, "priority": priority}
        )
        if draft is None:
            raise InvalidRequest("A proposal needs a non-empty title and description")
        [proposal_id] = await self.synthesizer.create_proposals([draft], actor_id)
        logger.info(f"{actor_id} created proposal {proposal_id} manually")
        return await self.get_proposal(proposal_id)

    # =========================================================================
    # AI stages
    # =========================================================================

    async def generate_code(self, proposal_id, actor_id, provider=None, model=None) -> CodeBundleView:
        bundle = await self.generator.generate(proposal_id, actor_id, provider=provider, model=model)
        return CodeBundleView.model_validate(bundle, from_attributes=True)

    async def validate_code(self, proposal_id, actor_id, provider=None, model=None):
        return await self.validator.validate(proposal_id, actor_id, provider=provider, model=model)

    async def run_pipeline(self, proposal_id, actor_id, provider=None, model=None) -> DeliveryState:
        """Generate then validate one proposal. Administrator only."""
        actor_id = await require_admin(self.roles, actor_id, "run the delivery pipeline")
        return await self.workflow.run(proposal_id, actor_id, provider=provider, model=model)

    # =========================================================================
    # Approval gate
    # =========================================================================

    async def record_approval(self, proposal_id, admin_id, comments=None):
        return await self.gate.record_approval(proposal_id, admin_id, comments)

    async def record_rejection(self, proposal_id, admin_id, reason) -> ProposalView:
        await self.gate.record_rejection(proposal_id, admin_id, reason)
        return await self.get_proposal(proposal_id)

    async def mark_implemented(self, proposal_id, admin_id, notes=None) -> ProposalView:
        await self.gate.mark_implemented(proposal_id, admin_id, notes)
        return await self.get_proposal(proposal_id)

    async def override_stage(self, proposal_id, admin_id, stage, reason) -> ProposalView:
        await self.gate.override_stage(proposal_id, admin_id, stage, reason)
        return await self.get_proposal(proposal_id)

    async def set_required_approvals(self, admin_id, required_approvals):
        return await self.governance.set_required_approvals(admin_id, required_approvals)

    async def get_governance(self):
        return await self.governance.get()

    # =========================================================================
    # Community voting
    # =========================================================================

    async def cast_vote(self, proposal_id, user_id, vote, reason=None) -> VoteView:
        return await self.voting.cast_vote(proposal_id, user_id, vote, reason)

    async def vote_summary(self, proposal_id: str) -> VoteSummary:
        return await self.voting.summary(proposal_id)

    # =========================================================================
    # Provider passthrough
    # =========================================================================

    async def complete(
        self,
        actor_id: str | None,
        messages: list[LLMMessage],
        provider: str | None = None,
        model: str | None = None,
        stream: bool = False,
    ) -> LLMResponse:
        require_identity(actor_id, "call completion providers")
        return await self.router.complete(messages, provider=provider, model=model, stream=stream)

    # =========================================================================
    # Read-only views
    # =========================================================================

    async def _view(self, session: AsyncSession, proposal: FeatureProposal) -> ProposalView:
        bundle = (
            await session.execute(select(CodeBundle).where(CodeBundle.proposal_id == proposal.id))
        ).scalar_one_or_none()
        records = (
            await session.execute(
                select(CodeValidation)
                .where(CodeValidation.proposal_id == proposal.id)
                .order_by(CodeValidation.id)
            )
        ).scalars().all()
        return ProposalView(
            id=proposal.id,
            title=proposal.title,
            description=proposal.description,
            category=proposal.category,
            priority=proposal.priority,
            lifecycle_stage=proposal.lifecycle_stage,
            required_approvals=proposal.required_approvals,
            approvals_count=await count_approvals(session, proposal),
            vote_summary=await tally_votes(session, proposal.id),
            validation_score=proposal.validation_score,
            review_notes=proposal.review_notes,
            reviewed_by=proposal.reviewed_by,
            reviewed_at=proposal.reviewed_at,
            requested_by=proposal.requested_by,
            created_at=proposal.created_at,
            code_bundle=CodeBundleView.model_validate(bundle, from_attributes=True) if bundle else None,
            validations=[
                ValidationRecordView(
                    dimension=r.dimension,
                    status=r.status,
                    feedback=r.feedback,
                    details=r.details,
                    completed_at=r.completed_at,
                )
                for r in records
            ],
        )

    async def get_proposal(self, proposal_id: str) -> ProposalView:
        async with session_scope(self.session_maker) as session:
            proposal = await load_proposal(session, proposal_id)
            return await self._view(session, proposal)

    async def list_proposals(
        self,
        stage: LifecycleStage | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> ProposalListResponse:
        async with session_scope(self.session_maker) as session:
            query = select(FeatureProposal)
            count_query = select(func.count()).select_from(FeatureProposal)
            if stage is not None:
                query = query.where(FeatureProposal.lifecycle_stage == LifecycleStage(stage).value)
                count_query = count_query.where(FeatureProposal.lifecycle_stage == LifecycleStage(stage).value)

            total = (await session.execute(count_query)).scalar_one()
            result = await session.execute(
                query.order_by(col(FeatureProposal.created_at).desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            )
            proposals = [await self._view(session, p) for p in result.scalars().all()]
            return ProposalListResponse(proposals=proposals, total=total, page=page, per_page=per_page)
