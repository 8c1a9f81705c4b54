"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from feature_governance.api.routes import router
from feature_governance.config import Settings, configure_logging, get_settings
from feature_governance.database.session import close_db, init_db
from feature_governance.errors import PipelineError, RateLimited
from feature_governance.pipeline.collaborators import JsonFileDiscussionReader
from feature_governance.pipeline.service import GovernancePipeline


logger = logging.getLogger(__name__)

# Error kind -> HTTP status. Unlisted kinds map to 500.
ERROR_STATUS: dict[str, int] = {
    "permission_denied": 403,
    "not_found": 404,
    "pipeline_state_error": 409,
    "invalid_request": 422,
    "rate_limited": 429,
    "quota_exceeded": 402,
    "provider_error": 502,
    "transport_error": 503,
    "configuration_error": 503,
}


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status = ERROR_STATUS.get(exc.kind, 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.message}")
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)


def build_pipeline(settings: Settings) -> GovernancePipeline:
    reader = None
    if settings.discussion_export_path:
        reader = JsonFileDiscussionReader(settings.discussion_export_path)
    return GovernancePipeline(reader=reader, settings=settings)


def create_app(
    pipeline: GovernancePipeline | None = None,
    engine: AsyncEngine | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create the application.

    Args:
        pipeline: Pre-built pipeline; one is built from settings on startup when omitted
        engine: Engine whose tables are created on startup, for an injected pipeline
        settings: Application settings
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        configure_logging(settings.log_level)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")

        if engine is not None:
            await init_db(engine)
        elif settings.environment == "development":
            await init_db()
            logger.info("Database initialized")

        app.state.pipeline = pipeline or build_pipeline(settings)
        yield

        logger.info("Shutting down...")
        await app.state.pipeline.close()
        if pipeline is None:
            await close_db()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Feature governance pipeline API - proposals, code generation, validation and approval",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.include_router(router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "feature_governance.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
