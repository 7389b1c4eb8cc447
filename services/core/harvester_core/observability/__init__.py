"""Observability package for logging."""

from harvester_core.observability.logging import (
    StructuredLogger,
    JsonFormatter,
    RunContext,
    get_logger,
    configure_logging,
)

__all__ = [
    "StructuredLogger",
    "JsonFormatter",
    "RunContext",
    "get_logger",
    "configure_logging",
]
