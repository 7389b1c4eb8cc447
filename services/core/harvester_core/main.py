"""Harvester Core API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from harvester_core.api.routes import runs as runs_routes
from harvester_core.config import get_settings
from harvester_core.observability.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="harvester-core",
    )
    app.state.settings = settings
    yield
    # Shutdown


app = FastAPI(
    title="Harvester Core API",
    description="Supervised contact acquisition runs against external scraping providers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Run-Id"],
)

# Include API routers
app.include_router(runs_routes.router)


@app.get("/healthz")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True, "service": "harvester-core"}


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": "Harvester Core API",
        "version": "0.1.0",
        "status": "running",
    }
