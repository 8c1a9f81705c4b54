"""SQLModel database tables for the governance pipeline.

Tables:
- FeatureProposal: candidate features moving through the lifecycle
- CodeBundle: generated artifacts, one row per proposal (replaced on regeneration)
- CodeValidation: one row per quality dimension per validation run
- ProposalApproval: append-only set of administrator approvals
- ProposalVote: advisory community votes, one per member per proposal
- ProviderConfig: admin-managed external provider credentials
- GovernanceConfig: platform-wide singleton with the approval threshold
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from feature_governance.schemas import ARTIFACT_PLACEHOLDERS, ArtifactKind, LifecycleStage, VoteChoice


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Proposal Model
# =============================================================================

class FeatureProposal(SQLModel, table=True):
    """A candidate feature moving through the governance pipeline."""

    __tablename__ = "feature_proposals"
    __table_args__ = (
        Index("ix_feature_proposals_stage_created", "lifecycle_stage", "created_at"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str = Field(max_length=100)
    description: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(default="other")
    priority: str = Field(default="medium")  # Use Priority enum values

    lifecycle_stage: str = Field(default=LifecycleStage.GENERATING.value, index=True)
    required_approvals: int = Field(default=1, ge=1, le=10)
    approval_round: int = Field(default=0, description="Incremented on each entry into pending_approval")

    validation_score: int | None = Field(default=None)
    review_notes: str | None = Field(default=None, sa_column=Column(Text))
    reviewed_by: str | None = Field(default=None)
    reviewed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))

    requested_by: str | None = Field(default=None)
    ai_reasoning: str | None = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# =============================================================================
# CodeBundle Model
# =============================================================================

class CodeBundle(SQLModel, table=True):
    """Generated artifacts for one proposal."""

    __tablename__ = "code_bundles"

    id: int | None = Field(default=None, primary_key=True)
    proposal_id: str = Field(foreign_key="feature_proposals.id", unique=True, index=True)

    frontend: str = Field(sa_column=Column(Text, nullable=False))
    backend: str = Field(sa_column=Column(Text, nullable=False))
    database: str = Field(sa_column=Column(Text, nullable=False))
    raw_response: str = Field(sa_column=Column(Text, nullable=False), description="Unparsed model output, kept for audit")

    provider: str
    model: str
    generated_by: str
    generated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))

    def artifact(self, kind: ArtifactKind | str) -> str:
        return getattr(self, ArtifactKind(kind).value)

    def has_artifact(self, kind: ArtifactKind | str) -> bool:
        kind = ArtifactKind(kind)
        return self.artifact(kind) != ARTIFACT_PLACEHOLDERS[kind.value]

    @property
    def is_empty(self) -> bool:
        return not any(self.has_artifact(kind) for kind in ArtifactKind)


# =============================================================================
# Validation Model
# =============================================================================

class CodeValidation(SQLModel, table=True):
    """Verdict for one quality dimension of a code bundle."""

    __tablename__ = "code_validations"
    __table_args__ = (
        UniqueConstraint("proposal_id", "dimension", name="uq_code_validations_dimension"),
    )

    id: int | None = Field(default=None, primary_key=True)
    proposal_id: str = Field(foreign_key="feature_proposals.id", index=True)

    dimension: str  # Use ValidationDimension enum values
    status: str = Field(default="pending")  # Use ValidationStatus enum values
    feedback: str | None = Field(default=None, sa_column=Column(Text))
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    completed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# =============================================================================
# Approval Model
# =============================================================================

class ProposalApproval(SQLModel, table=True):
    """One administrator approval. Rows are only ever inserted."""

    __tablename__ = "proposal_approvals"
    __table_args__ = (
        UniqueConstraint("proposal_id", "admin_id", "approval_round", name="uq_proposal_approvals_admin_round"),
    )

    id: int | None = Field(default=None, primary_key=True)
    proposal_id: str = Field(foreign_key="feature_proposals.id", index=True)
    admin_id: str = Field(index=True)
    approval_round: int = Field(default=1)
    comments: str | None = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


# =============================================================================
# Community Vote Model
# =============================================================================

class ProposalVote(SQLModel, table=True):
    """One member's advisory vote. A re-vote updates the row in place."""

    __tablename__ = "proposal_votes"
    __table_args__ = (
        UniqueConstraint("proposal_id", "user_id", name="uq_proposal_votes_user"),
    )

    id: int | None = Field(default=None, primary_key=True)
    proposal_id: str = Field(foreign_key="feature_proposals.id", index=True)
    user_id: str = Field(index=True)
    vote: str = Field(default=VoteChoice.ABSTAIN.value)
    reason: str | None = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# =============================================================================
# Provider Config Model
# =============================================================================

class ProviderConfig(SQLModel, table=True):
    """Credentials and defaults for one external completion provider."""

    __tablename__ = "provider_configs"

    id: int | None = Field(default=None, primary_key=True)
    provider: str = Field(unique=True, index=True)
    display_name: str
    api_key: str | None = Field(default=None, description="Secret; never logged or returned unmasked")
    model_defaults: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    is_active: bool = Field(default=True)
    is_default: bool = Field(default=False)

    created_by: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))


# =============================================================================
# Governance Config Model
# =============================================================================

GOVERNANCE_CONFIG_ID = 1


class GovernanceConfig(SQLModel, table=True):
    """Platform-wide governance settings (single row)."""

    __tablename__ = "governance_config"

    id: int = Field(default=GOVERNANCE_CONFIG_ID, primary_key=True)
    required_approvals: int = Field(default=1, ge=1, le=10)
    updated_by: str | None = Field(default=None)
    updated_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
