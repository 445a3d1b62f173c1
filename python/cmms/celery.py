"""Celery application configuration.

Central configuration for Celery used by both API (for enqueuing)
and worker (for executing tasks).

Usage:
    from cmms.tasks import sync_watch_folder
    sync_watch_folder.apply_async(args=[user_id], queue="sync")
"""

from celery import Celery

from cmms.config import get_settings

settings = get_settings()

celery_app = Celery("cmms")

celery_app.conf.broker_url = settings.effective_celery_broker_url
celery_app.conf.result_backend = settings.effective_celery_result_backend

celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.timezone = "UTC"
celery_app.conf.enable_utc = True

# Watch-folder syncs run on their own queue
celery_app.conf.task_routes = {
    "sync_watch_folder": {"queue": "sync"},
    "sweep_watch_folders": {"queue": "sync"},
}
celery_app.conf.task_default_queue = "default"

if settings.sync_sweep_interval_s > 0:
    celery_app.conf.beat_schedule = {
        "sweep-watch-folders": {
            "task": "sweep_watch_folders",
            "schedule": float(settings.sync_sweep_interval_s),
        },
    }


def get_celery_app() -> Celery:
    """Get the Celery application instance."""
    return celery_app
