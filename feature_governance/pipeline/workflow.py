"""LangGraph workflow for delivering one proposal through the AI stages.

Graph structure:
START → generate → validate → END
            ↓
           END (no artifacts produced)
"""

from __future__ import annotations

import logging
from typing import Literal, TypedDict

from langgraph.graph import END, StateGraph

from feature_governance.pipeline.codegen import CodeGenerator
from feature_governance.pipeline.validation import CodeValidator
from feature_governance.schemas import CodeBundleView, ValidationReport


logger = logging.getLogger(__name__)


# =============================================================================
# State Definition
# =============================================================================

class DeliveryState(TypedDict, total=False):
    """State for one delivery run.

    Attributes:
        proposal_id: Proposal being delivered
        actor_id: Administrator who triggered the run
        provider: Optional provider override for both stages
        model: Optional model override for both stages
        bundle: Generated code bundle
        report: Validation report, absent when validation was skipped
        steps: Names of the nodes that ran, in order
    """
    proposal_id: str
    actor_id: str
    provider: str | None
    model: str | None
    bundle: CodeBundleView | None
    report: ValidationReport | None
    steps: list[str]


def initial_state(
    proposal_id: str,
    actor_id: str,
    provider: str | None = None,
    model: str | None = None,
) -> DeliveryState:
    return DeliveryState(
        proposal_id=proposal_id,
        actor_id=actor_id,
        provider=provider,
        model=model,
        bundle=None,
        report=None,
        steps=[],
    )


# =============================================================================
# Workflow
# =============================================================================

class DeliveryWorkflow:
    """Compiled generate → validate graph bound to the stage components."""

    def __init__(self, generator: CodeGenerator, validator: CodeValidator):
        self._generator = generator
        self._validator = validator
        self._graph = self.build().compile()

    async def generate_node(self, state: DeliveryState) -> DeliveryState:
        logger.info(f"[{state['proposal_id']}] Starting generate_node")
        bundle = await self._generator.generate(
            state["proposal_id"],
            state["actor_id"],
            provider=state.get("provider"),
            model=state.get("model"),
        )
        return {
            "bundle": CodeBundleView.model_validate(bundle, from_attributes=True),
            "steps": state.get("steps", []) + ["generate"],
        }

    async def validate_node(self, state: DeliveryState) -> DeliveryState:
        logger.info(f"[{state['proposal_id']}] Starting validate_node")
        report = await self._validator.validate(
            state["proposal_id"],
            state["actor_id"],
            provider=state.get("provider"),
            model=state.get("model"),
        )
        return {"report": report, "steps": state.get("steps", []) + ["validate"]}

    @staticmethod
    def should_validate(state: DeliveryState) -> Literal["validate", "end"]:
        """Validate only when generation produced at least one artifact."""
        bundle = state.get("bundle")
        if bundle is None or not bundle.has_artifacts:
            logger.warning(f"[{state['proposal_id']}] No artifacts generated; skipping validation")
            return "end"
        return "validate"

    def build(self) -> StateGraph:
        workflow = StateGraph(DeliveryState)

        workflow.add_node("generate", self.generate_node)
        workflow.add_node("validate", self.validate_node)

        workflow.set_entry_point("generate")
        workflow.add_conditional_edges(
            "generate",
            self.should_validate,
            {
                "validate": "validate",
                "end": END,
            },
        )
        workflow.add_edge("validate", END)

        return workflow

    async def run(
        self,
        proposal_id: str,
        actor_id: str,
        provider: str | None = None,
        model: str | None = None,
    ) -> DeliveryState:
        """Execute the workflow. Errors from either stage propagate."""
        state = initial_state(proposal_id, actor_id, provider, model)
        logger.info(f"Starting delivery run for proposal {proposal_id}")
        result = await self._graph.ainvoke(state)
        logger.info(f"Delivery run for proposal {proposal_id} finished after {', '.join(result['steps'])}")
        return result
