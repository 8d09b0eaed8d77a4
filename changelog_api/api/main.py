"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from changelog_api.api.changelogs import public_router, router as changelogs_router
from changelog_api.api.deps import ServiceContainer
from changelog_api.api.routes import router
from changelog_api.config import Settings, get_settings
from changelog_api.database.models import utcnow
from changelog_api.database.session import Database
from changelog_api.llm.base import LLMAdapter
from changelog_api.tools.github import GitHubClient


# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: ServiceContainer = app.state.services
    settings = services.settings

    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    if settings.environment != "production":
        await services.database.init()
        logger.info("Database initialized")

    # No pipeline task survives a restart; other workers' live records are
    # only touched once they pass the stale cutoff
    cutoff = None
    if not settings.generation_sweep_all_on_startup:
        cutoff = utcnow() - timedelta(minutes=settings.generation_stale_after_minutes)
    expired = await services.generations.expire_stale(older_than=cutoff)
    if expired:
        logger.warning(f"Marked {expired} leftover generations as failed")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await services.close()


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    github: GitHubClient | None = None,
    llm_adapter: LLMAdapter | None = None,
) -> FastAPI:
    """Build the application; collaborators not given are built from settings."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="AI changelog generation from GitHub commit history",
        lifespan=lifespan,
    )
    app.state.services = ServiceContainer.build(
        settings,
        database=database,
        github=github,
        llm_adapter=llm_adapter,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routes
    app.include_router(router, prefix="/api")
    app.include_router(changelogs_router, prefix="/api")
    app.include_router(public_router, prefix="/api")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "changelog_api.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
