"""Code generation stage: expand one proposal into a labeled code bundle."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from feature_governance.database.models import CodeBundle, utc_now
from feature_governance.database.session import session_scope
from feature_governance.pipeline.collaborators import CompletionRouter, RoleResolver, require_admin
from feature_governance.pipeline.lifecycle import apply_transition, load_proposal, require_stage
from feature_governance.pipeline.locks import ProposalLocks
from feature_governance.pipeline.parsing import extract_code_blocks
from feature_governance.pipeline.prompts import IMPLEMENTATION_PROMPT, format_implementation_prompt
from feature_governance.schemas import ARTIFACT_PLACEHOLDERS, ArtifactKind, LifecycleStage, LLMMessage


logger = logging.getLogger(__name__)

# Fence tags recognized for each artifact kind.
ARTIFACT_TAGS: dict[ArtifactKind, tuple[str, ...]] = {
    ArtifactKind.FRONTEND: ("tsx", "jsx"),
    ArtifactKind.BACKEND: ("typescript", "ts"),
    ArtifactKind.DATABASE: ("sql",),
}

GENERATABLE_STAGES = (
    LifecycleStage.GENERATING,
    LifecycleStage.VALIDATING,
    LifecycleStage.VALIDATION_FAILED,
)


def extract_artifacts(content: str) -> dict[str, str]:
    """Split a raw model answer into artifacts by fence tag.

    All blocks of a kind are joined; a kind without blocks gets its
    placeholder, so every slot is always filled.
    """
    artifacts = {}
    for kind, tags in ARTIFACT_TAGS.items():
        blocks = [b for b in extract_code_blocks(content, tags) if b.strip()]
        artifacts[kind.value] = "\n\n".join(blocks) if blocks else ARTIFACT_PLACEHOLDERS[kind.value]
    return artifacts


class CodeGenerator:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        router: CompletionRouter,
        roles: RoleResolver,
        locks: ProposalLocks | None = None,
    ):
        self._session_maker = session_maker
        self._router = router
        self._roles = roles
        self._locks = locks or ProposalLocks()

    async def generate(
        self,
        proposal_id: str,
        actor_id: str | None,
        provider: str | None = None,
        model: str | None = None,
    ) -> CodeBundle:
        """Generate and persist the code bundle for a proposal.

        The caller must be an administrator; this is checked before anything
        else. Provider errors propagate unchanged and nothing is written
        unless the whole bundle is ready.
        """
        actor_id = await require_admin(self._roles, actor_id, "generate code")

        async with session_scope(self._session_maker) as session:
            proposal = await load_proposal(session, proposal_id)
            require_stage(proposal, GENERATABLE_STAGES, "generate code")
            title, description = proposal.title, proposal.description

        logger.info(f"Admin {actor_id} generating code for proposal {proposal_id}")
        response = await self._router.complete(
            messages=[
                LLMMessage(role="system", content=IMPLEMENTATION_PROMPT),
                LLMMessage(role="user", content=format_implementation_prompt(title, description)),
            ],
            provider=provider,
            model=model,
        )
        raw = response.content or ""
        artifacts = extract_artifacts(raw)

        async with self._locks.hold(proposal_id):
            async with session_scope(self._session_maker) as session:
                proposal = await load_proposal(session, proposal_id, for_update=True)
                require_stage(proposal, GENERATABLE_STAGES, "store generated code")

                existing = await session.execute(
                    select(CodeBundle).where(CodeBundle.proposal_id == proposal_id)
                )
                bundle = existing.scalar_one_or_none() or CodeBundle(proposal_id=proposal_id)
                bundle.frontend = artifacts[ArtifactKind.FRONTEND.value]
                bundle.backend = artifacts[ArtifactKind.BACKEND.value]
                bundle.database = artifacts[ArtifactKind.DATABASE.value]
                bundle.raw_response = raw
                bundle.provider = response.provider
                bundle.model = response.model
                bundle.generated_by = actor_id
                bundle.generated_at = utc_now()
                session.add(bundle)

                apply_transition(proposal, LifecycleStage.VALIDATING, actor_id)
                session.add(proposal)

        logger.info(
            f"Stored code for proposal {proposal_id} from {response.provider}/{response.model} "
            f"({', '.join(k.value for k in ArtifactKind if bundle.has_artifact(k)) or 'no artifacts'})"
        )
        return bundle
