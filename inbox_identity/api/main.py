"""
Inbox Identity Service - FastAPI Application

Identity resolution backend for the unified inbox.
Provides:
- Duplicate contact discovery
- Failure-atomic contact merges (single and batch)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from inbox_identity import __version__
from inbox_identity.api.middleware import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    get_cors_origins,
)
from inbox_identity.api.routes import contacts, health
from inbox_identity.config import get_settings
from inbox_identity.db.client import close_db, get_session_factory, init_db
from inbox_identity.identity.store import PostgresContactStore
from inbox_identity.kernel.http.errors import register_exception_handlers
from inbox_identity.kernel.logging import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown."""
    settings = get_settings()

    logger.info(
        "Starting Inbox Identity Service",
        version=__version__,
        environment=settings.environment,
    )

    await init_db()
    app.state.contact_store = PostgresContactStore(get_session_factory())
    logger.info("PostgreSQL connection initialized")

    yield

    logger.info("Shutting down Inbox Identity Service")
    await close_db()


app = FastAPI(
    title="Inbox Identity API",
    description="Duplicate contact discovery and merge",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Request ID tracking
app.add_middleware(RequestIDMiddleware)

# Security headers
app.add_middleware(SecurityHeadersMiddleware)

# CORS middleware (must be after security headers)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

# Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

register_exception_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(contacts.router, prefix="/api/v1", tags=["Contacts"])


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Inbox Identity API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
