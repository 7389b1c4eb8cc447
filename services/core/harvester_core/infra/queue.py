"""Celery dispatch for runs executed on the worker."""

from celery import Celery

from harvester_core.config import get_settings

EXECUTE_RUN_TASK = "acquisition.execute_run"
ACQUISITION_QUEUE = "acquisition"


def get_celery_app() -> Celery:
    """Get a Celery app instance."""
    settings = get_settings()
    return Celery(broker=settings.celery_broker_url, backend=settings.celery_result_backend)


def dispatch_run(run_id: int) -> str:
    """Queue a pending run for the worker. Returns the Celery task ID."""
    celery_app = get_celery_app()
    task = celery_app.send_task(
        EXECUTE_RUN_TASK,
        kwargs={"run_id": run_id},
        queue=ACQUISITION_QUEUE,
    )
    return task.id
