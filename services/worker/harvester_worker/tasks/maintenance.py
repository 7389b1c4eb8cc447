"""Maintenance tasks for run health."""

import logging
from datetime import datetime, timezone
from typing import Optional

from harvester_worker.celery_app import app

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


@app.task(name="maintenance.fail_stale_runs", bind=True, max_retries=3)
def fail_stale_runs(self, max_age_minutes: Optional[int] = None) -> dict:
    """Fail active runs with no progress for max_age_minutes.

    A run whose process died, or whose dispatch was lost while it was still
    pending, never reaches a terminal status on its own.
    Each stale run is failed with a System log entry saying why.

    Args:
        max_age_minutes: Idle threshold. Defaults to STALE_RUN_MINUTES.

    Returns:
        Dict with status, failed run IDs, and timestamps.
    """
    started_at = _now_utc()

    try:
        from harvester_core.config import get_settings
        from harvester_core.domain.services.runs import RunService
        from harvester_core.infra.db import get_sync_session_factory, session_scope

        if max_age_minutes is None:
            max_age_minutes = get_settings().stale_run_minutes

        with session_scope(get_sync_session_factory()) as session:
            failed_ids = RunService(session).fail_stale_runs(max_age_minutes=max_age_minutes)

        if failed_ids:
            logger.warning(f"Failed {len(failed_ids)} stale runs: {failed_ids}")

        completed_at = _now_utc()

        return {
            "status": "success",
            "runs_failed": failed_ids,
            "max_age_minutes": max_age_minutes,
            "started_at": started_at.isoformat(),
            "completed_at": completed_at.isoformat(),
            "duration_seconds": int((completed_at - started_at).total_seconds()),
        }

    except Exception as exc:
        completed_at = _now_utc()

        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))

        return {
            "status": "failed",
            "error": str(exc),
            "max_age_minutes": max_age_minutes,
            "started_at": started_at.isoformat(),
            "completed_at": completed_at.isoformat(),
        }
