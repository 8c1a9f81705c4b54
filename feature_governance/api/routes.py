"""FastAPI routes for the governance pipeline.

Proposals:
- GET  /proposals                  - List proposals, optionally by stage
- POST /proposals                  - Manual proposal entry
- POST /proposals/synthesize       - Derive proposals from recent discussion
- GET  /proposals/{id}             - Proposal with bundle and validation records
- POST /proposals/{id}/generate    - Generate the code bundle (admin)
- POST /proposals/{id}/validate    - Validate the current bundle
- POST /proposals/{id}/run         - Generate then validate (admin)
- POST /proposals/{id}/approve     - Record an approval (admin)
- POST /proposals/{id}/reject      - Reject with a reason (admin)
- POST /proposals/{id}/implemented - Acknowledge deployment (admin)
- POST /proposals/{id}/override    - Explicit stage override (admin)
- GET  /proposals/{id}/votes       - Community vote tally
- POST /proposals/{id}/votes       - Cast or change an advisory vote

Configuration:
- GET/PUT /governance              - Approval threshold
- GET  /providers/catalog          - Supported providers and models
- GET/POST /providers              - Provider configs (admin)
- PATCH/DELETE /providers/{name}   - Rotate, toggle, default, delete (admin)
- POST /complete                   - Routed completion passthrough

The acting identity is read from the ``X-Actor-Id`` header.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from feature_governance.api.deps import ActorDep, PipelineDep
from feature_governance.config import get_settings
from feature_governance.schemas import (
    ApprovalRequest,
    ApprovalResult,
    CastVoteRequest,
    CodeBundleView,
    CompletionRequest,
    GenerateRequest,
    GovernanceUpdateRequest,
    GovernanceView,
    ImplementedRequest,
    LifecycleStage,
    PipelineRunResponse,
    ProposalCreateRequest,
    ProposalListResponse,
    ProposalView,
    ProviderCatalogEntry,
    ProviderConfigCreateRequest,
    ProviderConfigUpdateRequest,
    ProviderConfigView,
    RejectionRequest,
    StageOverrideRequest,
    SynthesisSummary,
    SynthesizeRequest,
    ValidateRequest,
    ValidationReport,
    VoteSummary,
    VoteView,
)


logger = logging.getLogger(__name__)
router = APIRouter()


# =============================================================================
# Health Check
# =============================================================================

@router.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    settings = get_settings()
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# =============================================================================
# Proposals
# =============================================================================

@router.get("/proposals", response_model=ProposalListResponse)
async def list_proposals(
    pipeline: PipelineDep,
    stage: LifecycleStage | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
) -> ProposalListResponse:
    return await pipeline.list_proposals(stage=stage, page=page, per_page=per_page)


@router.post("/proposals", response_model=ProposalView, status_code=201)
async def create_proposal(request: ProposalCreateRequest, pipeline: PipelineDep, actor_id: ActorDep) -> ProposalView:
    return await pipeline.create_proposal(
        actor_id,
        title=request.title,
        description=request.description,
        category=request.category,
        priority=request.priority,
    )


@router.post("/proposals/synthesize", response_model=SynthesisSummary)
async def synthesize_proposals(
    request: SynthesizeRequest,
    pipeline: PipelineDep,
    actor_id: ActorDep,
) -> SynthesisSummary:
    """Analyze recent discussion and create (or preview) proposals."""
    return await pipeline.synthesize_proposals(
        days=request.days,
        max_items=request.max_items,
        dry_run=request.dry_run,
        actor_id=actor_id,
    )


@router.get("/proposals/{proposal_id}", response_model=ProposalView)
async def get_proposal(proposal_id: str, pipeline: PipelineDep) -> ProposalView:
    return await pipeline.get_proposal(proposal_id)


@router.post("/proposals/{proposal_id}/generate", response_model=CodeBundleView)
async def generate_code(
    proposal_id: str,
    pipeline: PipelineDep,
    actor_id: ActorDep,
    request: GenerateRequest | None = None,
) -> CodeBundleView:
    request = request or GenerateRequest()
    return await pipeline.generate_code(proposal_id, actor_id, provider=request.provider, model=request.model)


@router.post("/proposals/{proposal_id}/validate", response_model=ValidationReport)
async def validate_code(
    proposal_id: str,
    pipeline: PipelineDep,
    actor_id: ActorDep,
    request: ValidateRequest | None = None,
) -> ValidationReport:
    """Validate the current bundle.

    Provider failures do not produce an error response: they are recorded
    as a failed run and reported with ``fail_closed`` set.
    """
    request = request or ValidateRequest()
    return await pipeline.validate_code(proposal_id, actor_id, provider=request.provider, model=request.model)


@router.post("/proposals/{proposal_id}/run", response_model=PipelineRunResponse)
async def run_pipeline(
    proposal_id: str,
    pipeline: PipelineDep,
    actor_id: ActorDep,
    request: GenerateRequest | None = None,
) -> PipelineRunResponse:
    request = request or GenerateRequest()
    state = await pipeline.run_pipeline(proposal_id, actor_id, provider=request.provider, model=request.model)
    return PipelineRunResponse(
        proposal_id=proposal_id,
        steps=state.get("steps", []),
        code_bundle=state.get("bundle"),
        validation=state.get("report"),
    )


@router.post("/proposals/{proposal_id}/approve", response_model=ApprovalResult)
async def approve_proposal(
    proposal_id: str,
    pipeline: PipelineDep,
    actor_id: ActorDep,
    request: ApprovalRequest | None = None,
) -> ApprovalResult:
    request = request or ApprovalRequest()
    return await pipeline.record_approval(proposal_id, actor_id, request.comments)


@router.post("/proposals/{proposal_id}/reject", response_model=ProposalView)
async def reject_proposal(
    proposal_id: str,
    request: RejectionRequest,
    pipeline: PipelineDep,
    actor_id: ActorDep,
) -> ProposalView:
    return await pipeline.record_rejection(proposal_id, actor_id, request.reason)


@router.post("/proposals/{proposal_id}/implemented", response_model=ProposalView)
async def mark_implemented(
    proposal_id: str,
    pipeline: PipelineDep,
    actor_id: ActorDep,
    request: ImplementedRequest | None = None,
) -> ProposalView:
    request = request or ImplementedRequest()
    return await pipeline.mark_implemented(proposal_id, actor_id, request.notes)


@router.post("/proposals/{proposal_id}/override", response_model=ProposalView)
async def override_stage(
    proposal_id: str,
    request: StageOverrideRequest,
    pipeline: PipelineDep,
    actor_id: ActorDep,
) -> ProposalView:
    return await pipeline.override_stage(proposal_id, actor_id, request.stage, request.reason)


@router.get("/proposals/{proposal_id}/votes", response_model=VoteSummary)
async def vote_summary(proposal_id: str, pipeline: PipelineDep) -> VoteSummary:
    return await pipeline.vote_summary(proposal_id)


@router.post("/proposals/{proposal_id}/votes", response_model=VoteView)
async def cast_vote(
    proposal_id: str,
    request: CastVoteRequest,
    pipeline: PipelineDep,
    actor_id: ActorDep,
) -> VoteView:
    return await pipeline.cast_vote(proposal_id, actor_id, request.vote, request.reason)


# =============================================================================
# Governance
# =============================================================================

@router.get("/governance", response_model=GovernanceView)
async def get_governance(pipeline: PipelineDep) -> GovernanceView:
    return await pipeline.get_governance()


@router.put("/governance", response_model=GovernanceView)
async def set_required_approvals(
    request: GovernanceUpdateRequest,
    pipeline: PipelineDep,
    actor_id: ActorDep,
) -> GovernanceView:
    return await pipeline.set_required_approvals(actor_id, request.required_approvals)


# =============================================================================
# Providers
# =============================================================================

@router.get("/providers/catalog", response_model=list[ProviderCatalogEntry])
async def provider_catalog(pipeline: PipelineDep) -> list[ProviderCatalogEntry]:
    return pipeline.providers.catalog()


@router.get("/providers", response_model=list[ProviderConfigView])
async def list_provider_configs(pipeline: PipelineDep, actor_id: ActorDep) -> list[ProviderConfigView]:
    return await pipeline.providers.list_configs(actor_id)


@router.post("/providers", response_model=ProviderConfigView, status_code=201)
async def add_provider_config(
    request: ProviderConfigCreateRequest,
    pipeline: PipelineDep,
    actor_id: ActorDep,
) -> ProviderConfigView:
    return await pipeline.providers.add(actor_id, request)


@router.patch("/providers/{provider}", response_model=ProviderConfigView)
async def update_provider_config(
    provider: str,
    request: ProviderConfigUpdateRequest,
    pipeline: PipelineDep,
    actor_id: ActorDep,
) -> ProviderConfigView:
    return await pipeline.providers.update(actor_id, provider, request)


@router.delete("/providers/{provider}", status_code=204)
async def delete_provider_config(provider: str, pipeline: PipelineDep, actor_id: ActorDep) -> None:
    await pipeline.providers.delete(actor_id, provider)


@router.post("/complete")
async def complete(request: CompletionRequest, pipeline: PipelineDep, actor_id: ActorDep):
    """Routed completion. Streams ``text/event-stream`` when the adapter streams."""
    response = await pipeline.complete(
        actor_id,
        request.messages,
        provider=request.provider,
        model=request.model,
        stream=request.stream,
    )
    if response.is_stream:
        return StreamingResponse(response.stream, media_type="text/event-stream")
    return response.model_dump(exclude={"raw_response", "stream"})
