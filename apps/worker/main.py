"""Celery worker entrypoint.

Run with: celery -A apps.worker.main:celery_app worker -Q sync,default --loglevel=info
Beat:     celery -A apps.worker.main:celery_app beat

This module imports the Celery app and explicitly registers all tasks.
Task definitions are in the cmms.tasks package - no autodiscovery.

Logging Convention:
- All task log entries include request_id, task_name, task_id when available
- Tasks accept `request_id: str | None = None` parameter for correlation
- Use configure_task_logging() at the start of each task to set up context
"""

from celery.signals import worker_process_init

from cmms.celery import celery_app
from cmms.logging import configure_logging, get_logger

# Import tasks to register them with Celery
from cmms.tasks import sweep_watch_folders, sync_watch_folder  # noqa: F401


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    """Configure structlog when a worker process starts."""
    configure_logging()
    logger = get_logger(__name__)
    logger.info("celery_worker_started", queue="sync")


__all__ = ["celery_app"]
