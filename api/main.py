"""
Lead Pipeline CRM API - Main Application.

FastAPI application with CORS enabled for frontend communication.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.config import Settings, get_settings
from api.errors import register_error_handlers
from api.routers import interactions, leads
from services.rate_limiter import InMemoryRateLimiter

logger = logging.getLogger(__name__)


def build_rate_limiter(settings: Settings):
    """In-memory limiter for a single process, Supabase-backed when scaled out."""
    if settings.rate_limit_backend == "supabase":
        from repositories.client import get_supabase
        from repositories.rate_limit_repository import SupabaseRateLimiter

        return SupabaseRateLimiter(get_supabase())
    return InMemoryRateLimiter(sweep_interval_seconds=settings.rate_limit_sweep_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    limiter = build_rate_limiter(settings)
    app.state.rate_limiter = limiter
    limiter.start()
    logger.info("Rate limiter started", extra={"backend": settings.rate_limit_backend})
    try:
        yield
    finally:
        limiter.stop()
        logger.info("Rate limiter stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Create FastAPI application
    app = FastAPI(
        title="Lead Pipeline CRM API",
        description="REST API for managing leads, their pipeline status and interactions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "Content-Disposition",
            "Retry-After",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )

    register_error_handlers(app)

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status and version.
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "lead-pipeline-crm-api"
        }

    @app.get("/", tags=["Root"])
    def root():
        """
        Root endpoint with API information.
        """
        return {
            "message": "Lead Pipeline CRM API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health"
        }

    app.include_router(leads.router, prefix="/api", tags=["Leads"])
    app.include_router(interactions.router, prefix="/api", tags=["Interactions"])

    return app


app = create_app()
