"""Pydantic schemas for all pipeline I/O contracts.

These schemas define the strict contracts between:
- API endpoints and clients
- Provider adapter inputs/outputs
- Model output documents and the typed database records
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================

class LifecycleStage(str, Enum):
    """Stage of a proposal in the governance pipeline."""
    GENERATING = "generating"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"


TERMINAL_STAGES = frozenset({LifecycleStage.REJECTED, LifecycleStage.IMPLEMENTED})

# Stages whose approval threshold follows platform-wide configuration changes.
THRESHOLD_TRACKING_STAGES = (
    LifecycleStage.GENERATING,
    LifecycleStage.VALIDATING,
    LifecycleStage.PENDING_APPROVAL,
)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ArtifactKind(str, Enum):
    """Kinds of artifacts in a code bundle."""
    FRONTEND = "frontend"
    BACKEND = "backend"
    DATABASE = "database"


# Slot values for artifacts missing from the model output. Never empty, so
# consumers can tell "not generated" apart from "generated but empty".
ARTIFACT_PLACEHOLDERS: dict[str, str] = {
    ArtifactKind.FRONTEND.value: "// No frontend code generated",
    ArtifactKind.BACKEND.value: "// No backend code generated",
    ArtifactKind.DATABASE.value: "-- No database code generated",
}


class ValidationDimension(str, Enum):
    SYNTAX = "syntax"
    SECURITY = "security"
    LOGIC = "logic"
    COMPATIBILITY = "compatibility"


class ValidationStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class VoteChoice(str, Enum):
    """Advisory community vote on a proposal awaiting approval."""
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"


# =============================================================================
# LLM Schemas
# =============================================================================

class LLMMessage(BaseModel):
    """A single message in an LLM conversation."""
    role: Literal["system", "user", "assistant"] = Field(...)
    content: str = Field(...)


class LLMResponse(BaseModel):
    """Response from a provider adapter.

    Exactly one of ``content`` and ``stream`` is meaningful: streaming calls
    hand back the untouched upstream body as an async byte iterator.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: str | None = None
    provider: str
    model: str
    usage: dict[str, Any] = Field(default_factory=dict)
    finish_reason: str | None = None
    raw_response: dict[str, Any] | None = None
    stream: Any = Field(default=None, exclude=True)

    @property
    def is_stream(self) -> bool:
        return self.stream is not None


# =============================================================================
# Signal ingestion
# =============================================================================

class DiscussionItem(BaseModel):
    """One recent community discussion thread."""
    id: str
    title: str
    body: str | None = None
    created_at: datetime
    views: int = 0
    replies: int = 0


class ProposalDraft(BaseModel):
    """A well-formed candidate proposal, normalized for insertion."""
    title: str = Field(..., max_length=100)
    description: str
    priority: Priority = Priority.MEDIUM
    category: str = "other"


class SynthesisSummary(BaseModel):
    """Outcome of one synthesis run."""
    analyzed_count: int
    candidate_count: int = 0
    created_count: int
    dropped_count: int = 0
    dry_run: bool = False
    proposal_ids: list[str] = Field(default_factory=list)
    drafts: list[ProposalDraft] = Field(default_factory=list)


# =============================================================================
# Validation output document
# =============================================================================

class DimensionVerdict(BaseModel):
    """One entry of the ``validations`` array in a model verdict."""
    type: str
    status: str = "failed"
    message: str = ""
    details: Any = None

    @field_validator("type", "status", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class ValidationVerdict(BaseModel):
    """Expected shape of the validation model output."""
    model_config = ConfigDict(populate_by_name=True)

    overall_score: float = Field(default=0, alias="overallScore")
    passed: bool = False
    validations: list[DimensionVerdict] = Field(default_factory=list)
    summary: str = ""
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("recommendations", mode="before")
    @classmethod
    def _coerce_recommendations(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class DimensionResult(BaseModel):
    dimension: ValidationDimension
    status: ValidationStatus
    feedback: str
    details: dict[str, Any] = Field(default_factory=dict)


class ValidationReport(BaseModel):
    """Typed result of one validation run."""
    proposal_id: str
    score: int = Field(..., ge=0, le=100)
    passed: bool
    lifecycle_stage: LifecycleStage
    summary: str
    recommendations: list[str] = Field(default_factory=list)
    results: list[DimensionResult] = Field(default_factory=list)
    fail_closed: bool = False
    fail_soft: bool = False


# =============================================================================
# Code generation
# =============================================================================

class CodeBundleView(BaseModel):
    proposal_id: str
    frontend: str
    backend: str
    database: str
    provider: str
    model: str
    generated_by: str
    generated_at: datetime

    @property
    def has_artifacts(self) -> bool:
        return any(getattr(self, k.value) != ARTIFACT_PLACEHOLDERS[k.value] for k in ArtifactKind)


# =============================================================================
# Approval gate
# =============================================================================

class ApprovalResult(BaseModel):
    proposal_id: str
    lifecycle_stage: LifecycleStage
    approvals_count: int
    required_approvals: int
    counted: bool = Field(..., description="Whether this action added a new approval")
    transitioned: bool = Field(..., description="Whether the quorum moved the proposal to approved")


class GovernanceView(BaseModel):
    required_approvals: int
    updated_by: str | None = None
    updated_at: datetime | None = None
    cascaded_count: int = 0
    approved_ids: list[str] = Field(default_factory=list)


# =============================================================================
# Community voting
# =============================================================================

class VoteSummary(BaseModel):
    """Tally of community votes. Advisory only, never part of the quorum."""
    approve_count: int = 0
    reject_count: int = 0
    abstain_count: int = 0
    total_count: int = 0

    @property
    def approve_ratio(self) -> float:
        return self.approve_count / self.total_count if self.total_count else 0.0


class VoteView(BaseModel):
    proposal_id: str
    user_id: str
    vote: VoteChoice
    reason: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    summary: VoteSummary


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class SynthesizeRequest(BaseModel):
    days: int = Field(default=7, ge=1, le=90)
    max_items: int = Field(default=50, ge=1)
    dry_run: bool = False


class ProposalCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category: str | None = None
    priority: str | None = None


class GenerateRequest(BaseModel):
    provider: str | None = None
    model: str | None = None


class ValidateRequest(BaseModel):
    provider: str | None = None
    model: str | None = None


class ApprovalRequest(BaseModel):
    comments: str | None = None


class RejectionRequest(BaseModel):
    reason: str


class ImplementedRequest(BaseModel):
    notes: str | None = None


class CastVoteRequest(BaseModel):
    vote: VoteChoice
    reason: str | None = None


class StageOverrideRequest(BaseModel):
    stage: LifecycleStage
    reason: str


class GovernanceUpdateRequest(BaseModel):
    required_approvals: int


class ProviderConfigCreateRequest(BaseModel):
    provider: str
    api_key: str | None = None
    display_name: str | None = None
    model_defaults: dict[str, Any] = Field(default_factory=dict)


class ProviderConfigUpdateRequest(BaseModel):
    api_key: str | None = None
    is_active: bool | None = None
    is_default: bool | None = None
    model_defaults: dict[str, Any] | None = None


class ProviderConfigView(BaseModel):
    """Provider config as shown to callers; the key is always masked."""
    id: int
    provider: str
    display_name: str
    api_key_masked: str | None = None
    model_defaults: dict[str, Any] = Field(default_factory=dict)
    is_active: bool
    is_default: bool


class ProviderCatalogEntry(BaseModel):
    provider: str
    default_model: str
    available_models: list[str]
    supports_streaming: bool
    requires_api_key: bool


class CompletionRequest(BaseModel):
    messages: list[LLMMessage] = Field(..., min_length=1)
    provider: str | None = None
    model: str | None = None
    stream: bool = False


class ValidationRecordView(BaseModel):
    dimension: ValidationDimension
    status: ValidationStatus
    feedback: str | None = None
    details: dict[str, Any] | None = None
    completed_at: datetime | None = None


class ProposalView(BaseModel):
    """Read-only view of a proposal for presentation layers."""
    id: str
    title: str
    description: str
    category: str
    priority: Priority
    lifecycle_stage: LifecycleStage
    required_approvals: int
    approvals_count: int = 0
    validation_score: int | None = None
    review_notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    requested_by: str | None = None
    created_at: datetime
    code_bundle: CodeBundleView | None = None
    validations: list[ValidationRecordView] = Field(default_factory=list)
    vote_summary: VoteSummary = Field(default_factory=VoteSummary)


class PipelineRunResponse(BaseModel):
    proposal_id: str
    steps: list[str]
    code_bundle: CodeBundleView | None = None
    validation: ValidationReport | None = None


class ProposalListResponse(BaseModel):
    proposals: list[ProposalView]
    total: int
    page: int = 1
    per_page: int = 20
