"""Acquisition tasks.

Runs started with EXECUTION_MODE=worker are created PENDING by the API and
queued here. The worker drives them to a terminal status; the API follows
progress through the persisted run log.
"""

import asyncio
import logging
from datetime import datetime, timezone

from harvester_worker.celery_app import app

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def _build_orchestrator():
    """Build a run orchestrator bound to the worker's database."""
    from harvester_core.config import get_settings
    from harvester_core.domain.services.orchestrator import build_orchestrator
    from harvester_core.infra.db import get_sync_session_factory
    from harvester_core.observability.logging import configure_logging

    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="harvester-worker",
    )
    return build_orchestrator(
        settings=settings,
        session_factory=get_sync_session_factory(),
    )


@app.task(
    bind=True,
    name="acquisition.execute_run",
    max_retries=0,
    acks_late=True,
)
def execute_run(self, run_id: int) -> dict:
    """Execute one pending acquisition run.

    Runs are not retried: a run that fails mid-way keeps its partial
    results and its FAILED status. A delivery of a run that is no longer
    pending is skipped.

    Args:
        run_id: ID of the run to execute.

    Returns:
        dict: Task result with the run's final status.
    """
    started_at = _now_utc()
    orchestrator = _build_orchestrator()

    final_status = asyncio.run(orchestrator.execute(run_id))
    completed_at = _now_utc()

    if final_status is None:
        logger.info(f"Run {run_id} was not pending, skipped")
        return {
            "status": "skipped",
            "run_id": run_id,
            "reason": "Run not pending",
        }

    logger.info(f"Run {run_id} finished with status {final_status}")
    return {
        "status": "success",
        "run_id": run_id,
        "run_status": final_status,
        "started_at": started_at.isoformat(),
        "completed_at": completed_at.isoformat(),
        "duration_seconds": int((completed_at - started_at).total_seconds()),
    }
