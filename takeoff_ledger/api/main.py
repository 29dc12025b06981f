"""
FastAPI application for the takeoff ledger.

Provides REST endpoints for:
- Running the pipeline over a document
- Reading and auditing stored ledgers
- Inspecting and validating policies
- Health checks
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from rich.logging import RichHandler

from ..config.settings import get_settings
from ..services import PipelineServices, build_services
from .routes import health_router, ledgers_router, policies_router, runs_router


def create_app(services: Optional[PipelineServices] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logging.basicConfig(
            level=settings.log_level,
            format="%(message)s",
            handlers=[RichHandler(rich_tracebacks=True)],
        )
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)
        yield
        await app.state.services.extraction_client.close()

    app = FastAPI(
        title="Takeoff Ledger API",
        description="Provenance ledger and staged inference pipeline for construction takeoff",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(runs_router)
    app.include_router(ledgers_router)
    app.include_router(policies_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "takeoff-ledger",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "takeoff_ledger.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
