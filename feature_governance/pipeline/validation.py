"""Validation stage: score a code bundle across the quality dimensions.

Two failure classes are handled differently:
- The provider call fails: fail closed. Every record is failed, the score is
  0 and the proposal moves to ``validation_failed``. Nothing is raised.
- The call succeeds but the answer is not the expected JSON: fail soft. A
  neutral verdict (score 50) is substituted and humans review the code.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from feature_governance.database.models import CodeBundle, CodeValidation, utc_now
from feature_governance.database.session import session_scope
from feature_governance.errors import ConfigurationError, PipelineStateError, ProviderCallError, ValidationParseError
from feature_governance.pipeline.collaborators import CompletionRouter, require_identity
from feature_governance.pipeline.governance import GovernanceStore
from feature_governance.pipeline.lifecycle import apply_transition, enter_pending_approval, load_proposal, require_stage
from feature_governance.pipeline.locks import ProposalLocks
from feature_governance.pipeline.parsing import load_json_object
from feature_governance.pipeline.prompts import VALIDATION_PROMPT, format_validation_prompt
from feature_governance.schemas import (
    DimensionResult,
    DimensionVerdict,
    LifecycleStage,
    LLMMessage,
    ValidationDimension,
    ValidationReport,
    ValidationStatus,
    ValidationVerdict,
)


logger = logging.getLogger(__name__)

VALIDATABLE_STAGES = (LifecycleStage.VALIDATING, LifecycleStage.VALIDATION_FAILED)

# Model statuses counted as a pass for the stored record.
PASSING_STATUSES = frozenset({"passed", "warning"})

FAIL_CLOSED_FEEDBACK = "Validation could not be completed because the provider call failed"
FAIL_CLOSED_SUMMARY = "Validation failed: the validation provider could not be reached"
FALLBACK_SCORE = 50
FALLBACK_SUMMARY = "Automatic validation incomplete - manual review recommended"
MISSING_DIMENSION_FEEDBACK = "No result returned for this dimension"


# =============================================================================
# Verdict parsing
# =============================================================================

def parse_verdict(content: str) -> ValidationVerdict:
    """Validate the model answer against the expected verdict shape.

    Raises:
        ValidationParseError: when no well-formed verdict can be read
    """
    try:
        return ValidationVerdict.model_validate(load_json_object(content))
    except (ValueError, ValidationError) as e:
        raise ValidationParseError(f"Unparseable validation output: {e}") from e


def fallback_verdict() -> ValidationVerdict:
    """Neutral verdict used when the model answer cannot be parsed."""
    return ValidationVerdict(
        overall_score=FALLBACK_SCORE,
        passed=True,
        validations=[
            DimensionVerdict(type=dimension.value, status="warning", message=FALLBACK_SUMMARY)
            for dimension in ValidationDimension
        ],
        summary=FALLBACK_SUMMARY,
        recommendations=["Review the generated code manually before approving"],
    )


def clamp_score(value: Any) -> int:
    try:
        score = round(float(value))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, score))


def dimension_results(verdict: ValidationVerdict) -> list[DimensionResult]:
    """Map a verdict onto exactly one typed result per dimension."""
    by_type: dict[str, DimensionVerdict] = {}
    for entry in verdict.validations:
        by_type.setdefault(entry.type, entry)

    results = []
    for dimension in ValidationDimension:
        entry = by_type.get(dimension.value)
        if entry is None:
            results.append(
                DimensionResult(
                    dimension=dimension,
                    status=ValidationStatus.FAILED,
                    feedback=MISSING_DIMENSION_FEEDBACK,
                    details={"details": None, "recommendations": verdict.recommendations},
                )
            )
            continue
        status = ValidationStatus.PASSED if entry.status in PASSING_STATUSES else ValidationStatus.FAILED
        results.append(
            DimensionResult(
                dimension=dimension,
                status=status,
                feedback=entry.message,
                details={"details": entry.details, "recommendations": verdict.recommendations},
            )
        )
    return results


# =============================================================================
# Stage
# =============================================================================

class CodeValidator:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        router: CompletionRouter,
        governance: GovernanceStore,
        locks: ProposalLocks | None = None,
    ):
        self._session_maker = session_maker
        self._router = router
        self._governance = governance
        self._locks = locks or ProposalLocks()

    async def validate(
        self,
        proposal_id: str,
        actor_id: str | None,
        provider: str | None = None,
        model: str | None = None,
    ) -> ValidationReport:
        """Validate the proposal's current bundle and move it on.

        Re-running replaces the four records and the score. Provider errors
        never escape this method; they become a persisted failed run.
        """
        actor_id = require_identity(actor_id, "validate code")
        bundle = await self._begin(proposal_id, actor_id)

        try:
            response = await self._router.complete(
                messages=[
                    LLMMessage(role="system", content=VALIDATION_PROMPT),
                    LLMMessage(
                        role="user",
                        content=format_validation_prompt(
                            bundle["title"],
                            bundle["description"],
                            bundle["frontend"],
                            bundle["backend"],
                            bundle["database"],
                        ),
                    ),
                ],
                provider=provider,
                model=model,
            )
        except (ConfigurationError, ProviderCallError) as e:
            logger.error(f"Validation provider call failed for proposal {proposal_id} ({e.kind}): {e.message}")
            return await self._fail_closed(proposal_id, actor_id, e)

        fail_soft = False
        try:
            verdict = parse_verdict(response.content or "")
        except ValidationParseError as e:
            logger.warning(f"Proposal {proposal_id}: {e.message}; using fallback verdict")
            verdict = fallback_verdict()
            fail_soft = True

        return await self._finish(
            proposal_id,
            actor_id,
            score=clamp_score(verdict.overall_score),
            passed=verdict.passed,
            summary=verdict.summary,
            recommendations=verdict.recommendations,
            results=dimension_results(verdict),
            fail_soft=fail_soft,
        )

    async def _begin(self, proposal_id: str, actor_id: str) -> dict[str, str]:
        """Enter ``validating`` and recreate four pending records."""
        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id, for_update=True)
                require_stage(proposal, VALIDATABLE_STAGES, "validate code")
                result = await session.execute(select(CodeBundle).where(CodeBundle.proposal_id == proposal_id))
                bundle = result.scalar_one_or_none()
                if bundle is None:
                    raise PipelineStateError(f"Proposal {proposal_id} has no generated code to validate")

                apply_transition(proposal, LifecycleStage.VALIDATING, actor_id)
                session.add(proposal)
                await session.execute(delete(CodeValidation).where(CodeValidation.proposal_id == proposal_id))
                session.add_all(
                    CodeValidation(
                        proposal_id=proposal_id,
                        dimension=dimension.value,
                        status=ValidationStatus.PENDING.value,
                    )
                    for dimension in ValidationDimension
                )
                return {
                    "title": proposal.title,
                    "description": proposal.description,
                    "frontend": bundle.frontend,
                    "backend": bundle.backend,
                    "database": bundle.database,
                }

    async def _fail_closed(self, proposal_id: str, actor_id: str, error: Exception) -> ValidationReport:
        kind = getattr(error, "kind", "provider_call_error")
        results = [
            DimensionResult(
                dimension=dimension,
                status=ValidationStatus.FAILED,
                feedback=FAIL_CLOSED_FEEDBACK,
                details={"error": kind},
            )
            for dimension in ValidationDimension
        ]
        return await self._finish(
            proposal_id,
            actor_id,
            score=0,
            passed=False,
            summary=FAIL_CLOSED_SUMMARY,
            recommendations=[],
            results=results,
            fail_closed=True,
        )

    async def _finish(
        self,
        proposal_id: str,
        actor_id: str,
        score: int,
        passed: bool,
        summary: str,
        recommendations: list[str],
        results: list[DimensionResult],
        fail_closed: bool = False,
        fail_soft: bool = False,
    ) -> ValidationReport:
        now = utc_now()
        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id, for_update=True)
                existing = await session.execute(
                    select(CodeValidation).where(CodeValidation.proposal_id == proposal_id)
                )
                records = {r.dimension: r for r in existing.scalars().all()}
                for result in results:
                    record = records.get(result.dimension.value) or CodeValidation(
                        proposal_id=proposal_id, dimension=result.dimension.value
                    )
                    record.status = result.status.value
                    record.feedback = result.feedback
                    record.details = result.details
                    record.completed_at = now
                    session.add(record)

                if passed:
                    required = await self._governance.required_approvals(session)
                    enter_pending_approval(proposal, required, actor_id)
                else:
                    apply_transition(proposal, LifecycleStage.VALIDATION_FAILED, actor_id)
                proposal.validation_score = score
                proposal.review_notes = summary
                session.add(proposal)
                stage = LifecycleStage(proposal.lifecycle_stage)

        outcome = "fail-closed" if fail_closed else "fail-soft" if fail_soft else "completed"
        logger.info(f"Validation {outcome} for proposal {proposal_id}: score {score}, stage {stage.value}")
        return ValidationReport(
            proposal_id=proposal_id,
            score=score,
            passed=passed,
            lifecycle_stage=stage,
            summary=summary,
            recommendations=recommendations,
            results=results,
            fail_closed=fail_closed,
            fail_soft=fail_soft,
        )
