"""Tests for proposal synthesis from community discussion."""

from __future__ import annotations

import json
import unittest
from datetime import datetime, timedelta, timezone

from sqlmodel import select

from feature_governance.database.models import FeatureProposal
from feature_governance.database.session import session_scope
from feature_governance.pipeline.collaborators import InMemoryDiscussionReader
from feature_governance.pipeline.governance import GovernanceStore
from feature_governance.pipeline.synthesizer import ProposalSynthesizer, normalize_candidate
from feature_governance.schemas import DiscussionItem, LifecycleStage, Priority
from tests.support import DatabaseTestCase, ScriptedRouter


def _items(count: int, age: timedelta = timedelta(hours=1)) -> list[DiscussionItem]:
    now = datetime.now(timezone.utc)
    return [
        DiscussionItem(
            id=f"thread-{i}",
            title=f"Thread {i}",
            body="Please add this " * 100,
            created_at=now - age - timedelta(minutes=i),
            views=10 * i,
            replies=i,
        )
        for i in range(count)
    ]


CANDIDATES = [
    {"title": "Dark mode", "description": "Theme by time of day", "priority": "high", "category": "Profiles"},
    {"title": "Playlist export", "description": "Export playlists as CSV"},
    {"title": "T" * 150, "description": "Long title", "priority": "urgent"},
    {"title": "No description"},
]


class ProposalSynthesizerTests(DatabaseTestCase):
    def _synthesizer(self, router: ScriptedRouter, items: list[DiscussionItem]) -> ProposalSynthesizer:
        governance = GovernanceStore(self.session_maker, self.roles, self.settings)
        return ProposalSynthesizer(
            self.session_maker, router, InMemoryDiscussionReader(items), governance, self.settings
        )

    async def _proposals(self) -> list[FeatureProposal]:
        async with session_scope(self.session_maker) as session:
            return list((await session.execute(select(FeatureProposal))).scalars().all())

    async def test_three_good_one_malformed(self) -> None:
        router = ScriptedRouter(json.dumps(CANDIDATES))
        synthesizer = self._synthesizer(router, _items(4))

        summary = await synthesizer.synthesize(days=7, max_items=50, actor_id="scheduler")

        self.assertEqual(summary.analyzed_count, 4)
        self.assertEqual(summary.candidate_count, 4)
        self.assertEqual(summary.created_count, 3)
        self.assertEqual(summary.dropped_count, 1)
        self.assertEqual(len(summary.proposal_ids), 3)

        proposals = {p.id: p for p in await self._proposals()}
        self.assertEqual(set(proposals), set(summary.proposal_ids))
        for proposal in proposals.values():
            self.assertEqual(proposal.lifecycle_stage, LifecycleStage.GENERATING.value)
            self.assertLessEqual(len(proposal.title), 100)
            self.assertEqual(proposal.requested_by, "scheduler")
            self.assertEqual(proposal.required_approvals, 1)

        by_title = {p.title: p for p in proposals.values()}
        self.assertEqual(by_title["Dark mode"].priority, "high")
        self.assertEqual(by_title["Dark mode"].category, "profiles")
        self.assertEqual(by_title["Playlist export"].priority, "medium")
        self.assertEqual(by_title["Playlist export"].category, "other")
        self.assertEqual(by_title["T" * 100].priority, "medium")

    async def test_fenced_answer_is_accepted(self) -> None:
        router = ScriptedRouter("```json\n" + json.dumps(CANDIDATES[:1]) + "\n```")

        summary = await self._synthesizer(router, _items(2)).synthesize()

        self.assertEqual(summary.created_count, 1)

    async def test_unparseable_answer_creates_nothing(self) -> None:
        router = ScriptedRouter("I could not find any proposals, sorry!")

        summary = await self._synthesizer(router, _items(2)).synthesize()

        self.assertEqual(summary.analyzed_count, 2)
        self.assertEqual(summary.created_count, 0)
        self.assertEqual(await self._proposals(), [])

    async def test_dry_run_inserts_nothing(self) -> None:
        router = ScriptedRouter(json.dumps(CANDIDATES))

        summary = await self._synthesizer(router, _items(3)).synthesize(dry_run=True)

        self.assertTrue(summary.dry_run)
        self.assertEqual(summary.created_count, 3)
        self.assertEqual(len(summary.drafts), 3)
        self.assertEqual(summary.proposal_ids, [])
        self.assertEqual(await self._proposals(), [])

    async def test_items_are_capped_at_fifty(self) -> None:
        router = ScriptedRouter("[]")

        summary = await self._synthesizer(router, _items(80)).synthesize(max_items=500)

        self.assertEqual(summary.analyzed_count, 50)
        prompt = router.calls[0]["messages"][1].content
        self.assertEqual(prompt.count("Title: Thread"), 50)

    async def test_excerpts_are_truncated(self) -> None:
        router = ScriptedRouter("[]")

        await self._synthesizer(router, _items(1)).synthesize()

        prompt = router.calls[0]["messages"][1].content
        content_line = next(line for line in prompt.splitlines() if line.startswith("Content: "))
        self.assertEqual(len(content_line) - len("Content: "), 500)
        self.assertEqual(router.calls[0]["temperature"], 0.3)

    async def test_old_items_are_ignored_and_router_not_called(self) -> None:
        router = ScriptedRouter()

        summary = await self._synthesizer(router, _items(3, age=timedelta(days=30))).synthesize(days=7)

        self.assertEqual(summary.analyzed_count, 0)
        self.assertEqual(router.calls, [])

    async def test_new_proposals_snapshot_governance_threshold(self) -> None:
        governance = GovernanceStore(self.session_maker, self.roles, self.settings)
        await governance.set_required_approvals("admin-1", 4)
        router = ScriptedRouter(json.dumps(CANDIDATES[:1]))

        await self._synthesizer(router, _items(1)).synthesize()

        [proposal] = await self._proposals()
        self.assertEqual(proposal.required_approvals, 4)


class NormalizeCandidateTests(unittest.TestCase):
    def test_rejects_non_objects_and_blank_fields(self) -> None:
        self.assertIsNone(normalize_candidate("Dark mode"))
        self.assertIsNone(normalize_candidate({"title": "  ", "description": "x"}))
        self.assertIsNone(normalize_candidate({"title": "x", "description": None}))

    def test_normalizes_priority_case(self) -> None:
        draft = normalize_candidate({"title": "x", "description": "y", "priority": "CRITICAL"})
        self.assertEqual(draft.priority, Priority.CRITICAL)
