"""Celery task running a full watch-folder sync for one user.

- max_retries=0: a failed sync is retried by the next trigger or sweep
- A held sync lease is not an error; the task reports "skipped"
- Runs with the user's stored Google credentials
"""

from uuid import UUID

from cmms.celery import celery_app
from cmms.db.session import get_session_factory
from cmms.errors import ApiError, ApiErrorCode
from cmms.google.client import ProviderError
from cmms.logging import clear_task_context, configure_task_logging, get_logger
from cmms.services.credentials import build_document_provider
from cmms.services.sync import sync_all_documents

logger = get_logger(__name__)


@celery_app.task(bind=True, max_retries=0, name="sync_watch_folder")
def sync_watch_folder(self, user_id: str, request_id: str | None = None) -> dict:
    """Sync a user's watch folder.

    Args:
        user_id: UUID of the user whose folder is synced.
        request_id: Optional request ID for log correlation.

    Returns:
        Dict with status and, on success, the FullSyncResult fields.
    """
    configure_task_logging(
        request_id=request_id,
        task_name="sync_watch_folder",
        task_id=self.request.id,
        user_id=user_id,
    )
    logger.info("sync_task_started")

    db = get_session_factory()()
    try:
        provider = build_document_provider(db, UUID(user_id))
        result = sync_all_documents(db, provider, UUID(user_id))
    except ApiError as e:
        if e.code == ApiErrorCode.E_SYNC_IN_PROGRESS:
            logger.info("sync_task_skipped", reason="lease_held")
            return {"status": "skipped", "reason": e.message}
        logger.warning("sync_task_failed", code=e.code.value, error=e.message)
        return {"status": "failed", "code": e.code.value, "error": e.message}
    except ProviderError as e:
        logger.warning("sync_task_failed", upstream_status=e.status_code, error=e.message)
        return {"status": "failed", "code": ApiErrorCode.E_PROVIDER_ERROR.value, "error": e.message}
    finally:
        db.close()
        clear_task_context()

    logger.info(
        "sync_task_completed",
        synced=result.documents_synced,
        errors=len(result.errors),
    )
    return {"status": "success", **result.model_dump(mode="json")}
