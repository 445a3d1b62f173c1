"""Periodic sweep that queues a watch-folder sync for every user with one.

Run by Celery beat every SYNC_SWEEP_INTERVAL_S seconds. Users whose sync
lease is currently held are skipped.
"""

from sqlalchemy import text

from cmms.celery import celery_app
from cmms.db.session import get_session_factory
from cmms.logging import get_logger
from cmms.services.sync import LEASE_TTL
from cmms.tasks.sync_watch_folder import sync_watch_folder

logger = get_logger(__name__)


def queue_watch_folder_syncs() -> int:
    """Enqueue a sync for each user with a watch folder.

    Returns:
        Number of syncs enqueued.
    """
    db = get_session_factory()()
    try:
        user_ids = db.scalars(
            text("""
                SELECT id FROM users
                WHERE watched_folder_id IS NOT NULL
                  AND (sync_lease_acquired_at IS NULL
                       OR sync_lease_acquired_at < now() - make_interval(secs => :ttl))
                ORDER BY id
            """),
            {"ttl": LEASE_TTL.total_seconds()},
        ).all()
    finally:
        db.close()

    for user_id in user_ids:
        sync_watch_folder.apply_async(args=[str(user_id)], queue="sync")

    logger.info("watch_folder_sweep_queued", count=len(user_ids))
    return len(user_ids)


@celery_app.task(name="sweep_watch_folders")
def sweep_watch_folders() -> dict:
    return {"queued": queue_watch_folder_syncs()}
