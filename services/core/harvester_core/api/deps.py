"""API dependencies for dependency injection."""

from typing import Annotated, Optional

from fastapi import Depends

from harvester_core.config import get_settings
from harvester_core.domain.services.orchestrator import RunOrchestrator, build_orchestrator
from harvester_core.infra.db import get_sync_session_factory
from harvester_core.infra.queue import dispatch_run


# One orchestrator per process: it owns the in-process run tasks and tokens
_orchestrator: Optional[RunOrchestrator] = None


def get_orchestrator() -> RunOrchestrator:
    """Get the process-wide run orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        settings = get_settings()
        _orchestrator = build_orchestrator(
            settings=settings,
            session_factory=get_sync_session_factory(),
            dispatcher=dispatch_run if settings.execution_mode == "worker" else None,
        )
    return _orchestrator


# Type aliases for cleaner route signatures
Orchestrator = Annotated[RunOrchestrator, Depends(get_orchestrator)]
