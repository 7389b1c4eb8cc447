"""Celery application configuration for Harvester Worker."""

import os

from celery import Celery

# Celery configuration from environment
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")
STALE_RUN_CHECK_SECONDS = float(os.getenv("STALE_RUN_CHECK_SECONDS", "900"))

app = Celery(
    "harvester_worker",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=[
        "harvester_worker.tasks.acquisition",
        "harvester_worker.tasks.maintenance",
    ],
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time limits (seconds). A run is many batches of up to 10 minutes each.
    task_soft_time_limit=6 * 3600,
    task_time_limit=6 * 3600 + 300,
    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,
    # Queue routing
    task_routes={
        "acquisition.*": {"queue": "acquisition"},
        "maintenance.*": {"queue": "maintenance"},
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Fail runs whose worker died mid-run
    "fail-stale-runs-periodic": {
        "task": "maintenance.fail_stale_runs",
        "schedule": STALE_RUN_CHECK_SECONDS,
        "args": (),
    },
}


if __name__ == "__main__":
    app.start()
