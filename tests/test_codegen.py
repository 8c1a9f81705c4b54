"""Tests for the code generation stage."""

from __future__ import annotations

import unittest

from sqlmodel import select

from feature_governance.database.models import CodeBundle, FeatureProposal
from feature_governance.database.session import session_scope
from feature_governance.errors import PermissionDenied, PipelineStateError, RateLimited
from feature_governance.pipeline.codegen import CodeGenerator, extract_artifacts
from feature_governance.schemas import ARTIFACT_PLACEHOLDERS, LifecycleStage
from tests.support import ADMINS, MEMBER, DatabaseTestCase, ScriptedRouter


FULL_ANSWER = """Here is the implementation.

```sql
CREATE TABLE themes (id uuid primary key);
```

```sql
ALTER TABLE themes ENABLE ROW LEVEL SECURITY;
```

```typescript
export async function handler(req: Request) { return new Response("ok"); }
```

```tsx
export function ThemeToggle() { return <button>Toggle</button>; }
```
"""


class ExtractArtifactsTests(unittest.TestCase):
    def test_joins_all_blocks_of_a_kind(self) -> None:
        artifacts = extract_artifacts(FULL_ANSWER)

        self.assertEqual(
            artifacts["database"],
            "CREATE TABLE themes (id uuid primary key);\n\nALTER TABLE themes ENABLE ROW LEVEL SECURITY;",
        )
        self.assertIn("export async function handler", artifacts["backend"])
        self.assertIn("ThemeToggle", artifacts["frontend"])

    def test_missing_kinds_get_placeholders(self) -> None:
        artifacts = extract_artifacts("```sql\nSELECT 1;\n```")

        self.assertEqual(artifacts["database"], "SELECT 1;")
        self.assertEqual(artifacts["frontend"], ARTIFACT_PLACEHOLDERS["frontend"])
        self.assertEqual(artifacts["backend"], ARTIFACT_PLACEHOLDERS["backend"])

    def test_untagged_and_unknown_fences_are_ignored(self) -> None:
        artifacts = extract_artifacts("```\nplain\n```\n```python\nprint(1)\n```")

        self.assertEqual(artifacts, ARTIFACT_PLACEHOLDERS)

    def test_alternate_tags(self) -> None:
        artifacts = extract_artifacts("```jsx\n<App />\n```\n```ts\nconst x = 1;\n```")

        self.assertEqual(artifacts["frontend"], "<App />")
        self.assertEqual(artifacts["backend"], "const x = 1;")


class CodeGeneratorTests(DatabaseTestCase):
    def _generator(self, router: ScriptedRouter) -> CodeGenerator:
        return CodeGenerator(self.session_maker, router, self.roles)

    async def _bundles(self, proposal_id: str) -> list[CodeBundle]:
        async with session_scope(self.session_maker) as session:
            result = await session.execute(select(CodeBundle).where(CodeBundle.proposal_id == proposal_id))
            return list(result.scalars().all())

    async def test_generates_bundle_and_advances_stage(self) -> None:
        proposal_id = await self.add_proposal()
        router = ScriptedRouter(FULL_ANSWER)

        bundle = await self._generator(router).generate(proposal_id, ADMINS[0], provider="openai", model="gpt-4o")

        self.assertEqual(bundle.generated_by, ADMINS[0])
        self.assertEqual(bundle.provider, "openai")
        self.assertEqual(bundle.model, "gpt-4o")
        self.assertEqual(bundle.raw_response, FULL_ANSWER)
        self.assertFalse(bundle.is_empty)

        proposal = await self.fetch(FeatureProposal, proposal_id)
        self.assertEqual(proposal.lifecycle_stage, LifecycleStage.VALIDATING.value)
        self.assertEqual(proposal.reviewed_by, ADMINS[0])

        prompt = router.calls[0]["messages"][1].content
        self.assertIn("Dark mode", prompt)
        self.assertIn("Switch themes by time of day", prompt)

    async def test_non_admin_is_denied_before_any_call(self) -> None:
        proposal_id = await self.add_proposal()
        router = ScriptedRouter(FULL_ANSWER)

        for actor in (MEMBER, None):
            with self.assertRaises(PermissionDenied):
                await self._generator(router).generate(proposal_id, actor)

        self.assertEqual(router.calls, [])
        self.assertEqual(await self._bundles(proposal_id), [])
        proposal = await self.fetch(FeatureProposal, proposal_id)
        self.assertEqual(proposal.lifecycle_stage, LifecycleStage.GENERATING.value)

    async def test_provider_errors_propagate_and_nothing_is_written(self) -> None:
        proposal_id = await self.add_proposal()
        router = ScriptedRouter(RateLimited("slow down", provider="openai", retry_after=5))

        with self.assertRaises(RateLimited):
            await self._generator(router).generate(proposal_id, ADMINS[0])

        self.assertEqual(await self._bundles(proposal_id), [])
        proposal = await self.fetch(FeatureProposal, proposal_id)
        self.assertEqual(proposal.lifecycle_stage, LifecycleStage.GENERATING.value)

    async def test_regeneration_replaces_bundle(self) -> None:
        proposal_id = await self.add_proposal()
        router = ScriptedRouter(FULL_ANSWER, "```sql\nSELECT 2;\n```")
        generator = self._generator(router)

        await generator.generate(proposal_id, ADMINS[0])
        await generator.generate(proposal_id, ADMINS[1])

        [bundle] = await self._bundles(proposal_id)
        self.assertEqual(bundle.database, "SELECT 2;")
        self.assertEqual(bundle.frontend, ARTIFACT_PLACEHOLDERS["frontend"])
        self.assertEqual(bundle.generated_by, ADMINS[1])

    async def test_answer_without_fences_stores_placeholders(self) -> None:
        proposal_id = await self.add_proposal()

        bundle = await self._generator(ScriptedRouter("Sorry, I cannot help.")).generate(proposal_id, ADMINS[0])

        self.assertTrue(bundle.is_empty)
        for kind, placeholder in ARTIFACT_PLACEHOLDERS.items():
            self.assertEqual(bundle.artifact(kind), placeholder)

    async def test_wrong_stage_is_rejected(self) -> None:
        for stage in (LifecycleStage.PENDING_APPROVAL, LifecycleStage.APPROVED, LifecycleStage.REJECTED):
            proposal_id = await self.add_proposal(stage=stage)
            router = ScriptedRouter(FULL_ANSWER)

            with self.assertRaises(PipelineStateError):
                await self._generator(router).generate(proposal_id, ADMINS[0])
            self.assertEqual(router.calls, [])
