"""Signal ingestion: turn recent community discussion into proposals.

Parsing is defensive: a model answer that is not a JSON array counts as no
candidates, and malformed candidates are dropped and counted. Proposals are
only ever inserted, never merged or overwritten.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feature_governance.config import SYNTHESIS_HARD_CAP, Settings, get_settings
from feature_governance.database.models import FeatureProposal, utc_now
from feature_governance.database.session import session_scope
from feature_governance.errors import InvalidRequest
from feature_governance.pipeline.collaborators import CompletionRouter, DiscussionReader
from feature_governance.pipeline.governance import GovernanceStore
from feature_governance.pipeline.parsing import load_json_array
from feature_governance.pipeline.prompts import SYNTHESIS_PROMPT, format_synthesis_prompt
from feature_governance.schemas import LLMMessage, Priority, ProposalDraft, SynthesisSummary


logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 100
DEFAULT_CATEGORY = "other"
SYNTHESIS_REASONING = "Proposal generated automatically from community discussion analysis"


def normalize_candidate(candidate: Any) -> ProposalDraft | None:
    """Turn one model candidate into a draft, or ``None`` if malformed."""
    if not isinstance(candidate, dict):
        return None
    title = candidate.get("title")
    description = candidate.get("description")
    if not isinstance(title, str) or not title.strip():
        return None
    if not isinstance(description, str) or not description.strip():
        return None

    priority = candidate.get("priority")
    try:
        priority = Priority(str(priority).strip().lower()) if priority else Priority.MEDIUM
    except ValueError:
        priority = Priority.MEDIUM

    category = candidate.get("category")
    if not isinstance(category, str) or not category.strip():
        category = DEFAULT_CATEGORY

    return ProposalDraft(
        title=title.strip()[:TITLE_MAX_CHARS],
        description=description.strip(),
        priority=priority,
        category=category.strip().lower(),
    )


class ProposalSynthesizer:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        router: CompletionRouter,
        reader: DiscussionReader,
        governance: GovernanceStore,
        settings: Settings | None = None,
    ):
        self._session_maker = session_maker
        self._router = router
        self._reader = reader
        self._governance = governance
        self._settings = settings or get_settings()

    async def synthesize(
        self,
        days: int | None = None,
        max_items: int | None = None,
        dry_run: bool = False,
        actor_id: str | None = None,
        provider: str | None = None,
        model: str | None = None,
    ) -> SynthesisSummary:
        """Analyze recent discussion and create proposals.

        Args:
            days: Lookback window in days
            max_items: Discussion items to analyze, capped at 50
            dry_run: Report what would be created without inserting
            actor_id: Identity that triggered the run, recorded on proposals
            provider: Provider override for the analysis call
            model: Model override for the analysis call

        Returns:
            SynthesisSummary with counts and created (or would-create) items
        """
        days = days or self._settings.synthesis_lookback_days
        if days < 1:
            raise InvalidRequest("days must be at least 1")
        limit = min(max_items or self._settings.synthesis_max_items, SYNTHESIS_HARD_CAP)
        if limit < 1:
            raise InvalidRequest("max_items must be at least 1")

        since = utc_now() - timedelta(days=days)
        items = await self._reader.recent_items(since, limit)
        items = items[:limit]
        if not items:
            logger.info(f"No discussion items in the last {days} days; nothing to analyze")
            return SynthesisSummary(analyzed_count=0, created_count=0, dry_run=dry_run)

        logger.info(f"Analyzing {len(items)} discussion items")
        response = await self._router.complete(
            messages=[
                LLMMessage(role="system", content=SYNTHESIS_PROMPT),
                LLMMessage(
                    role="user",
                    content=format_synthesis_prompt(items, self._settings.synthesis_excerpt_chars),
                ),
            ],
            provider=provider,
            model=model,
            temperature=0.3,
        )

        candidates = load_json_array(response.content or "")
        drafts = [d for d in (normalize_candidate(c) for c in candidates) if d is not None]
        dropped = len(candidates) - len(drafts)
        if dropped:
            logger.warning(f"Dropped {dropped} malformed proposal candidates")

        summary = SynthesisSummary(
            analyzed_count=len(items),
            candidate_count=len(candidates),
            created_count=len(drafts),
            dropped_count=dropped,
            dry_run=dry_run,
            drafts=drafts,
        )
        if dry_run:
            return summary

        summary.proposal_ids = await self.create_proposals(drafts, actor_id, SYNTHESIS_REASONING)
        logger.info(f"Synthesis created {len(summary.proposal_ids)} proposals")
        return summary

    async def create_proposals(
        self,
        drafts: list[ProposalDraft],
        actor_id: str | None,
        reasoning: str | None = None,
    ) -> list[str]:
        """Insert drafts as new proposals in the initial stage."""
        async with session_scope(self._session_maker) as session:
            required = await self._governance.required_approvals(session)
            proposals = [
                FeatureProposal(
                    title=draft.title,
                    description=draft.description,
                    category=draft.category,
                    priority=draft.priority.value,
                    required_approvals=required,
                    requested_by=actor_id,
                    ai_reasoning=reasoning,
                )
                for draft in drafts
            ]
            session.add_all(proposals)
        return [p.id for p in proposals]
