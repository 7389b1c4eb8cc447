"""Harvester Worker Tasks."""

# Import all tasks to register them with Celery
from harvester_worker.tasks import acquisition  # noqa: F401
from harvester_worker.tasks import maintenance  # noqa: F401
