"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from promptdeploy.api.routes import router
from promptdeploy.api.services import Services, build_services
from promptdeploy.config import Settings, get_settings


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Build the API application.

    Args:
        settings: Settings to use, defaults to the cached environment settings
        services: Pre-built services; built from settings at startup otherwise

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        if app.state.services is None:
            app.state.services = build_services(settings)
        await app.state.services.start()

        yield

        # Shutdown
        logger.info("Shutting down...")
        await app.state.services.stop()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="PromptDeploy API - Prompt to running web app",
        lifespan=lifespan,
    )
    app.state.services = services

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
        "promptdeploy.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
