"""HTTP surface tests: routes, identity header and error status mapping."""

from __future__ import annotations

import json
import unittest

from fastapi.testclient import TestClient

from feature_governance.api.main import create_app
from feature_governance.database.session import build_session_maker, create_engine
from feature_governance.errors import RateLimited
from feature_governance.pipeline import GovernancePipeline
from feature_governance.pipeline.collaborators import StaticRoleResolver
from feature_governance.schemas import LLMResponse, ValidationDimension
from tests.support import ADMINS, MEMBER, ScriptedRouter, make_settings


GENERATED = "```sql\nCREATE TABLE themes (id int);\n```\n```tsx\nexport const Toggle = () => null;\n```"
VERDICT = json.dumps(
    {
        "overallScore": 90,
        "passed": True,
        "validations": [{"type": d.value, "status": "passed", "message": "ok"} for d in ValidationDimension],
        "summary": "Looks good",
    }
)

ADMIN = {"X-Actor-Id": ADMINS[0]}
MEMBER_HEADERS = {"X-Actor-Id": MEMBER}


class _StreamingRouter(ScriptedRouter):
    async def complete(self, messages, provider=None, model=None, stream=False, **kwargs):
        async def body():
            yield b"data: hello\n\n"
            yield b"data: [DONE]\n\n"

        return LLMResponse(provider=provider or "scripted", model="m", stream=body())


class ApiTests(unittest.TestCase):
    """Each test gets its own in-memory database, created by the app lifespan."""

    def _client(self, router: ScriptedRouter) -> TestClient:
        settings = make_settings()
        engine = create_engine(settings.database_url)
        pipeline = GovernancePipeline(
            session_maker=build_session_maker(engine),
            router=router,
            roles=StaticRoleResolver(ADMINS),
            settings=settings,
        )
        client = TestClient(create_app(pipeline, engine=engine, settings=settings))
        client.__enter__()
        self.addCleanup(client.__exit__, None, None, None)
        return client

    def _create(self, client: TestClient, title: str = "Dark mode") -> str:
        response = client.post(
            "/api/proposals",
            json={"title": title, "description": "Switch themes by time of day", "priority": "high"},
            headers=MEMBER_HEADERS,
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["id"]

    def test_root_and_health(self) -> None:
        client = self._client(ScriptedRouter())

        self.assertEqual(client.get("/").json()["docs"], "/docs")
        self.assertEqual(client.get("/api/health").json()["status"], "ok")

    def test_create_and_read_proposal(self) -> None:
        client = self._client(ScriptedRouter())
        proposal_id = self._create(client)

        body = client.get(f"/api/proposals/{proposal_id}").json()
        self.assertEqual(body["lifecycle_stage"], "generating")
        self.assertEqual(body["requested_by"], MEMBER)

        listing = client.get("/api/proposals", params={"stage": "generating"}).json()
        self.assertEqual(listing["total"], 1)

    def test_missing_identity_is_403(self) -> None:
        client = self._client(ScriptedRouter())

        response = client.post("/api/proposals", json={"title": "A", "description": "B"})

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "permission_denied")

    def test_error_statuses(self) -> None:
        client = self._client(ScriptedRouter())
        proposal_id = self._create(client)

        self.assertEqual(client.get("/api/proposals/missing").status_code, 404)
        self.assertEqual(client.post(f"/api/proposals/{proposal_id}/generate", headers=MEMBER_HEADERS).status_code, 403)
        conflict = client.post(f"/api/proposals/{proposal_id}/approve", headers=ADMIN)
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["error"], "pipeline_state_error")
        invalid = client.put("/api/governance", json={"required_approvals": 11}, headers=ADMIN)
        self.assertEqual(invalid.status_code, 422)

    def test_rate_limit_maps_to_429_with_retry_after(self) -> None:
        client = self._client(ScriptedRouter(RateLimited("slow down", provider="openai", retry_after=7)))
        proposal_id = self._create(client)

        response = client.post(f"/api/proposals/{proposal_id}/generate", headers=ADMIN)

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.headers["retry-after"], "7")
        self.assertEqual(response.json()["retry_after"], 7)

    def test_full_lifecycle_over_http(self) -> None:
        client = self._client(ScriptedRouter(GENERATED, VERDICT))
        self.assertEqual(
            client.put("/api/governance", json={"required_approvals": 2}, headers=ADMIN).json()["required_approvals"],
            2,
        )
        proposal_id = self._create(client)

        run = client.post(f"/api/proposals/{proposal_id}/run", json={"provider": "openai"}, headers=ADMIN)
        self.assertEqual(run.status_code, 200, run.text)
        self.assertEqual(run.json()["steps"], ["generate", "validate"])
        self.assertEqual(run.json()["validation"]["lifecycle_stage"], "pending_approval")

        first = client.post(f"/api/proposals/{proposal_id}/approve", json={"comments": "ok"}, headers=ADMIN)
        self.assertFalse(first.json()["transitioned"])
        second = client.post(f"/api/proposals/{proposal_id}/approve", headers={"X-Actor-Id": ADMINS[1]})
        self.assertTrue(second.json()["transitioned"])

        done = client.post(f"/api/proposals/{proposal_id}/implemented", json={"notes": "Shipped"}, headers=ADMIN)
        self.assertEqual(done.json()["lifecycle_stage"], "implemented")

    def test_reject_and_override(self) -> None:
        client = self._client(ScriptedRouter())
        rejected_id = self._create(client, "One")
        overridden_id = self._create(client, "Two")

        rejected = client.post(f"/api/proposals/{rejected_id}/reject", json={"reason": "Duplicate"}, headers=ADMIN)
        self.assertEqual(rejected.json()["review_notes"], "Duplicate")

        overridden = client.post(
            f"/api/proposals/{overridden_id}/override",
            json={"stage": "validation_failed", "reason": "manual triage"},
            headers=ADMIN,
        )
        self.assertEqual(overridden.json()["lifecycle_stage"], "validation_failed")
        refused = client.post(
            f"/api/proposals/{overridden_id}/override",
            json={"stage": "approved", "reason": "skip"},
            headers=ADMIN,
        )
        self.assertEqual(refused.status_code, 422)

    def test_community_votes_over_http(self) -> None:
        client = self._client(ScriptedRouter(GENERATED, VERDICT))
        proposal_id = self._create(client)

        early = client.post(f"/api/proposals/{proposal_id}/votes", json={"vote": "approve"}, headers=MEMBER_HEADERS)
        self.assertEqual(early.status_code, 409)
        client.post(f"/api/proposals/{proposal_id}/run", headers=ADMIN)

        cast = client.post(
            f"/api/proposals/{proposal_id}/votes",
            json={"vote": "approve", "reason": "Useful at night"},
            headers=MEMBER_HEADERS,
        )
        self.assertEqual(cast.status_code, 200, cast.text)
        self.assertEqual(cast.json()["summary"]["approve_count"], 1)
        client.post(f"/api/proposals/{proposal_id}/votes", json={"vote": "reject"}, headers=MEMBER_HEADERS)
        client.post(f"/api/proposals/{proposal_id}/votes", json={"vote": "abstain"}, headers=ADMIN)

        summary = client.get(f"/api/proposals/{proposal_id}/votes").json()
        self.assertEqual(
            summary, {"approve_count": 0, "reject_count": 1, "abstain_count": 1, "total_count": 2}
        )
        view = client.get(f"/api/proposals/{proposal_id}").json()
        self.assertEqual(view["vote_summary"]["total_count"], 2)
        self.assertEqual(view["approvals_count"], 0)
        self.assertEqual(client.post(f"/api/proposals/{proposal_id}/votes", json={"vote": "approve"}).status_code, 403)
        self.assertEqual(
            client.post(f"/api/proposals/{proposal_id}/votes", json={"vote": "maybe"}, headers=MEMBER_HEADERS).status_code,
            422,
        )

    def test_provider_config_endpoints_mask_keys(self) -> None:
        client = self._client(ScriptedRouter())

        created = client.post(
            "/api/providers", json={"provider": "openai", "api_key": "sk-proj-1234567890abcd"}, headers=ADMIN
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["api_key_masked"], "sk-...abcd")
        self.assertNotIn("1234567890", client.get("/api/providers", headers=ADMIN).text)

        patched = client.patch("/api/providers/openai", json={"is_active": False}, headers=ADMIN)
        self.assertFalse(patched.json()["is_default"])
        self.assertEqual(client.delete("/api/providers/openai", headers=ADMIN).status_code, 204)
        self.assertEqual(client.delete("/api/providers/openai", headers=ADMIN).status_code, 404)
        self.assertEqual(client.get("/api/providers", headers=MEMBER_HEADERS).status_code, 403)

        catalog = client.get("/api/providers/catalog").json()
        self.assertIn("anthropic", [entry["provider"] for entry in catalog])

    def test_complete_passthrough(self) -> None:
        client = self._client(ScriptedRouter("pong"))

        response = client.post(
            "/api/complete", json={"messages": [{"role": "user", "content": "ping"}]}, headers=MEMBER_HEADERS
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["content"], "pong")
        self.assertNotIn("raw_response", response.json())

    def test_complete_streams_event_stream(self) -> None:
        client = self._client(_StreamingRouter())

        response = client.post(
            "/api/complete",
            json={"messages": [{"role": "user", "content": "ping"}], "stream": True},
            headers=MEMBER_HEADERS,
        )

        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        self.assertEqual(response.text, "data: hello\n\ndata: [DONE]\n\n")
