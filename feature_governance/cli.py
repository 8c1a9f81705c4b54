"""CLI entrypoint (Typer).

Runs pipeline operations locally against the configured database:
`feature-governance synthesize --days 7`, `feature-governance run <id>`, ...
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer
from pydantic import BaseModel

from feature_governance.config import configure_logging, get_settings
from feature_governance.database.session import close_db, init_db
from feature_governance.errors import PipelineError
from feature_governance.pipeline.collaborators import JsonFileDiscussionReader
from feature_governance.pipeline.providers import ProviderConfigManager
from feature_governance.pipeline.service import GovernancePipeline
from feature_governance.schemas import LifecycleStage, VoteChoice


app = typer.Typer(help="Feature governance pipeline CLI.")

ActorOption = typer.Option(None, "--actor", envvar="GOVERNANCE_ACTOR_ID", help="Acting identity")
ProviderOption = typer.Option(None, "--provider", help="Provider override")
ModelOption = typer.Option(None, "--model", help="Model override")


def _dump(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json(indent=2)
    if isinstance(value, dict):
        return json.dumps(
            {k: v.model_dump(mode="json") if isinstance(v, BaseModel) else v for k, v in value.items()},
            indent=2,
        )
    return json.dumps(value, indent=2, default=str)


def _execute(
    operation: Callable[[GovernancePipeline], Awaitable[Any]],
    export: Path | None = None,
) -> None:
    """Run one pipeline operation and print its result as JSON."""
    configure_logging()

    async def main() -> Any:
        settings = get_settings()
        await init_db()
        path = export or settings.discussion_export_path
        pipeline = GovernancePipeline(
            reader=JsonFileDiscussionReader(path) if path else None,
            settings=settings,
        )
        try:
            return await operation(pipeline)
        finally:
            await pipeline.close()
            await close_db()

    try:
        result = asyncio.run(main())
    except PipelineError as e:
        typer.echo(f"{e.kind}: {e.message}", err=True)
        raise typer.Exit(code=1)
    if result is not None:
        typer.echo(_dump(result))


@app.command()
def synthesize(
    days: int = typer.Option(7, "--days", min=1, help="Lookback window in days"),
    max_items: int = typer.Option(50, "--max-items", min=1, help="Discussion items to analyze (max 50)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report proposals without creating them"),
    export: Optional[Path] = typer.Option(None, "--export", exists=True, help="JSON export of forum threads"),
    actor: Optional[str] = ActorOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
):
    """Derive proposals from recent community discussion."""
    _execute(
        lambda p: p.synthesize_proposals(
            days=days, max_items=max_items, dry_run=dry_run, actor_id=actor, provider=provider, model=model
        ),
        export=export,
    )


@app.command()
def create(
    title: str,
    description: str,
    category: Optional[str] = typer.Option(None, "--category"),
    priority: Optional[str] = typer.Option(None, "--priority"),
    actor: Optional[str] = ActorOption,
):
    """Enter a proposal manually."""
    _execute(lambda p: p.create_proposal(actor, title, description, category=category, priority=priority))


@app.command()
def generate(
    proposal_id: str,
    actor: Optional[str] = ActorOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
):
    """Generate the code bundle for a proposal (admin)."""
    _execute(lambda p: p.generate_code(proposal_id, actor, provider=provider, model=model))


@app.command()
def validate(
    proposal_id: str,
    actor: Optional[str] = ActorOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
):
    """Validate the current code bundle of a proposal."""
    _execute(lambda p: p.validate_code(proposal_id, actor, provider=provider, model=model))


@app.command()
def run(
    proposal_id: str,
    actor: Optional[str] = ActorOption,
    provider: Optional[str] = ProviderOption,
    model: Optional[str] = ModelOption,
):
    """Generate then validate a proposal (admin)."""
    _execute(lambda p: p.run_pipeline(proposal_id, actor, provider=provider, model=model))


@app.command()
def approve(
    proposal_id: str,
    comments: Optional[str] = typer.Option(None, "--comments"),
    actor: Optional[str] = ActorOption,
):
    """Record an approval (admin)."""
    _execute(lambda p: p.record_approval(proposal_id, actor, comments))


@app.command()
def reject(
    proposal_id: str,
    reason: str = typer.Option(..., "--reason", help="Rejection reason (required)"),
    actor: Optional[str] = ActorOption,
):
    """Reject a proposal (admin)."""
    _execute(lambda p: p.record_rejection(proposal_id, actor, reason))


@app.command()
def implement(
    proposal_id: str,
    notes: Optional[str] = typer.Option(None, "--notes"),
    actor: Optional[str] = ActorOption,
):
    """Acknowledge that an approved proposal has been deployed (admin)."""
    _execute(lambda p: p.mark_implemented(proposal_id, actor, notes))


@app.command("override")
def override(
    proposal_id: str,
    stage: LifecycleStage,
    reason: str = typer.Option(..., "--reason"),
    actor: Optional[str] = ActorOption,
):
    """Move a proposal outside the normal edges (admin)."""
    _execute(lambda p: p.override_stage(proposal_id, actor, stage, reason))


@app.command()
def vote(
    proposal_id: str,
    choice: VoteChoice,
    reason: Optional[str] = typer.Option(None, "--reason"),
    actor: Optional[str] = ActorOption,
):
    """Cast or change an advisory community vote."""
    _execute(lambda p: p.cast_vote(proposal_id, actor, choice, reason))


@app.command("set-approvals")
def set_approvals(
    required_approvals: int,
    actor: Optional[str] = ActorOption,
):
    """Set the platform-wide approval threshold (admin)."""
    _execute(lambda p: p.set_required_approvals(actor, required_approvals))


@app.command()
def show(
    proposal_id: Optional[str] = typer.Argument(None),
    stage: Optional[LifecycleStage] = typer.Option(None, "--stage"),
):
    """Show one proposal, or list proposals."""
    if proposal_id:
        _execute(lambda p: p.get_proposal(proposal_id))
    else:
        _execute(lambda p: p.list_proposals(stage=stage))


@app.command()
def providers():
    """List supported providers and their models."""
    typer.echo(_dump([entry.model_dump() for entry in ProviderConfigManager.catalog()]))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "feature_governance.api.main:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    app()
