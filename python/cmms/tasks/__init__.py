"""Celery tasks for CMMS.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.

Usage in API (enqueue):
    from cmms.tasks import sync_watch_folder
    sync_watch_folder.apply_async(
        args=[user_id],
        kwargs={"request_id": request_id},
        queue="sync"
    )
"""

from cmms.tasks.sweep_watch_folders import sweep_watch_folders
from cmms.tasks.sync_watch_folder import sync_watch_folder

__all__ = ["sweep_watch_folders", "sync_watch_folder"]
