"""API routes."""

from harvester_core.api.routes import runs

__all__ = ["runs"]
