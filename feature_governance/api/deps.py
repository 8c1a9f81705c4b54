"""Request dependencies for the API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from feature_governance.pipeline.service import GovernancePipeline


def get_pipeline(request: Request) -> GovernancePipeline:
    return request.app.state.pipeline


async def get_actor_id(x_actor_id: Annotated[str | None, Header()] = None) -> str | None:
    """Acting identity, authenticated upstream and forwarded as ``X-Actor-Id``."""
    return x_actor_id.strip() if x_actor_id and x_actor_id.strip() else None


PipelineDep = Annotated[GovernancePipeline, Depends(get_pipeline)]
ActorDep = Annotated[str | None, Depends(get_actor_id)]
