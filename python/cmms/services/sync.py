"""Watch-folder sync orchestration and the per-user sync lease.

At most one sync runs per user at a time. Before any sync the user row's
sync_lease_acquired_at is claimed with a conditional UPDATE; a lease older
than LEASE_TTL is considered abandoned (crashed worker) and can be taken
over. A second trigger while the lease is held fails with
E_SYNC_IN_PROGRESS.

A full sync lists the watch folder, reconciles every registered document,
registers new ones and deactivates documents that left the folder. Only a
listing failure or a missing watch folder fails the whole run; per-document
failures are collected in the result.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.orm import Session

from cmms.db.models import Document, SyncAction, SyncStatus
from cmms.db.session import transaction
from cmms.errors import ApiError, ApiErrorCode, ConflictError, InvalidRequestError
from cmms.google.client import DocumentProviderBase, ProviderError
from cmms.logging import get_logger
from cmms.schemas.sync import (
    DocumentSyncStamp,
    FullSyncError,
    FullSyncResult,
    MarkerRepairResult,
    SyncResult,
    SyncStatusOut,
    WatchedFolder,
)
from cmms.services.documents import register_from_metadata, tag_drive_file
from cmms.services.ownership import get_user_or_404
from cmms.services.reconcile import repair_segment_marker, sync_document
from cmms.services.sync_log import write_sync_log

logger = get_logger(__name__)

LEASE_TTL = timedelta(minutes=15)


# =============================================================================
# Sync Lease
# =============================================================================


def acquire_sync_lease(db: Session, user_id: UUID) -> bool:
    """Claim the user's sync lease. Returns False if another sync holds it."""
    result = db.execute(
        text("""
            UPDATE users
            SET sync_lease_acquired_at = clock_timestamp()
            WHERE id = :user_id
              AND (sync_lease_acquired_at IS NULL
                   OR sync_lease_acquired_at < clock_timestamp() - make_interval(secs => :ttl))
        """),
        {"user_id": user_id, "ttl": LEASE_TTL.total_seconds()},
    )
    db.commit()
    return result.rowcount == 1


def release_sync_lease(db: Session, user_id: UUID) -> None:
    db.execute(
        text("UPDATE users SET sync_lease_acquired_at = NULL WHERE id = :user_id"),
        {"user_id": user_id},
    )
    db.commit()


def is_sync_in_progress(db: Session, user_id: UUID) -> bool:
    return bool(
        db.execute(
            text("""
                SELECT sync_lease_acquired_at IS NOT NULL
                   AND sync_lease_acquired_at >= clock_timestamp() - make_interval(secs => :ttl)
                FROM users WHERE id = :user_id
            """),
            {"user_id": user_id, "ttl": LEASE_TTL.total_seconds()},
        ).scalar()
    )


@contextmanager
def sync_lease(db: Session, user_id: UUID) -> Iterator[None]:
    """Hold the user's sync lease for the enclosed work.

    Raises:
        ConflictError(E_SYNC_IN_PROGRESS): Another sync holds the lease.
    """
    if not acquire_sync_lease(db, user_id):
        logger.info("sync_lease_busy", user_id=str(user_id))
        raise ConflictError(
            ApiErrorCode.E_SYNC_IN_PROGRESS, "A sync is already running for this user"
        )
    try:
        yield
    finally:
        if not db.is_active:
            db.rollback()
        release_sync_lease(db, user_id)


# =============================================================================
# Service Functions
# =============================================================================


def sync_single_document(
    db: Session, provider: DocumentProviderBase, user_id: UUID, document_id: UUID
) -> SyncResult:
    """Reconcile one document under the user's sync lease."""
    with sync_lease(db, user_id):
        return sync_document(db, provider, user_id, document_id)


def repair_marker(
    db: Session, provider: DocumentProviderBase, user_id: UUID, segment_id: UUID
) -> MarkerRepairResult:
    """Re-anchor an orphaned segment under the user's sync lease."""
    with sync_lease(db, user_id):
        return repair_segment_marker(db, provider, user_id, segment_id)


def sync_all_documents(
    db: Session, provider: DocumentProviderBase, user_id: UUID
) -> FullSyncResult:
    """Sync the user's whole watch folder under the sync lease.

    Raises:
        InvalidRequestError(E_WATCH_FOLDER_MISSING): No watch folder set.
        ConflictError(E_SYNC_IN_PROGRESS): Another sync is running.
        ProviderError: The folder listing failed.
    """
    user = get_user_or_404(db, user_id)
    folder_id = user.watched_folder_id
    if not folder_id:
        raise InvalidRequestError(
            ApiErrorCode.E_WATCH_FOLDER_MISSING, "No watched folder configured"
        )

    with sync_lease(db, user_id):
        return _sync_folder(db, provider, user_id, folder_id)


def _sync_folder(
    db: Session, provider: DocumentProviderBase, user_id: UUID, folder_id: str
) -> FullSyncResult:
    result = FullSyncResult()
    listed = provider.list_folder_documents(folder_id)

    registered_ids = dict(
        db.execute(
            select(Document.google_file_id, Document.id).where(
                Document.user_id == user_id, Document.is_active.is_(True)
            )
        ).all()
    )

    for meta in listed:
        document_id = registered_ids.pop(meta.id, None)

        if document_id is None:
            try:
                with transaction(db):
                    document, added = register_from_metadata(db, user_id, meta)
            except Exception as e:
                logger.warning(
                    "auto_register_failed",
                    google_file_id=meta.id,
                    error_type=type(e).__name__,
                )
                result.errors.append(FullSyncError(google_file_id=meta.id, error=str(e)))
                continue
            if added:
                result.documents_added += 1
            tag_drive_file(provider, document)
            continue

        try:
            if meta.modified_time is not None:
                with transaction(db):
                    db.execute(
                        update(Document)
                        .where(Document.id == document_id)
                        .values(last_modified_at=meta.modified_time)
                    )
            single = sync_document(db, provider, user_id, document_id)
        except Exception as e:
            message = e.message if isinstance(e, (ApiError, ProviderError)) else str(e)
            result.errors.append(
                FullSyncError(document_id=document_id, google_file_id=meta.id, error=message)
            )
            continue

        if single.status == "failed":
            details = "; ".join(c.details for c in single.conflicts) or "Sync failed"
            result.errors.append(
                FullSyncError(document_id=document_id, google_file_id=meta.id, error=details)
            )
            continue
        result.documents_synced += 1
        result.segments_updated += single.updated_segments

    # Whatever is left was registered but is no longer in the folder
    if registered_ids:
        with transaction(db):
            db.execute(
                update(Document)
                .where(Document.id.in_(list(registered_ids.values())))
                .values(is_active=False, updated_at=func.now())
            )
        result.documents_removed = len(registered_ids)

    status = SyncStatus.partial if result.errors else SyncStatus.success
    with transaction(db):
        write_sync_log(db, user_id, SyncAction.full_sync, status, result.model_dump(mode="json"))

    logger.info(
        "full_sync_completed",
        listed=len(listed),
        synced=result.documents_synced,
        added=result.documents_added,
        removed=result.documents_removed,
        errors=len(result.errors),
    )
    return result


def get_sync_status(db: Session, user_id: UUID) -> SyncStatusOut:
    """Last sync times, pending document count and lease state."""
    user = get_user_or_404(db, user_id)

    last_full_sync = db.execute(
        text("""
            SELECT created_at FROM sync_log
            WHERE user_id = :user_id AND action = 'full_sync'
            ORDER BY created_at DESC LIMIT 1
        """),
        {"user_id": user_id},
    ).scalar()
    last_document = db.execute(
        text("""
            SELECT document_id, created_at FROM sync_log
            WHERE user_id = :user_id AND action = 'single_sync'
            ORDER BY created_at DESC LIMIT 1
        """),
        {"user_id": user_id},
    ).first()
    pending = db.execute(
        text("""
            SELECT COUNT(*) FROM documents
            WHERE user_id = :user_id AND is_active = true
              AND (last_synced_at IS NULL OR last_modified_at > last_synced_at)
        """),
        {"user_id": user_id},
    ).scalar_one()

    return SyncStatusOut(
        last_full_sync=last_full_sync,
        last_document_sync=(
            DocumentSyncStamp(
                document_id=last_document.document_id, timestamp=last_document.created_at
            )
            if last_document
            else None
        ),
        pending_changes=pending,
        sync_in_progress=is_sync_in_progress(db, user_id),
        watched_folder=WatchedFolder(id=user.watched_folder_id) if user.watched_folder_id else None,
    )


def enqueue_full_sync(db: Session, user_id: UUID, request_id: str | None = None) -> str:
    """Queue a watch-folder sync on the worker and return the Celery task id.

    Raises:
        InvalidRequestError(E_WATCH_FOLDER_MISSING): No watch folder set.
        ApiError(E_SYNC_UNAVAILABLE): The broker could not be reached.
    """
    user = get_user_or_404(db, user_id)
    if not user.watched_folder_id:
        raise InvalidRequestError(
            ApiErrorCode.E_WATCH_FOLDER_MISSING, "No watched folder configured"
        )

    try:
        from cmms.tasks import sync_watch_folder

        async_result = sync_watch_folder.apply_async(
            args=[str(user_id)],
            kwargs={"request_id": request_id},
            queue="sync",
        )
    except Exception as exc:
        logger.error("full_sync_enqueue_failed", error=str(exc))
        raise ApiError(
            ApiErrorCode.E_SYNC_UNAVAILABLE, "Background sync is unavailable"
        ) from exc

    logger.info("full_sync_enqueued", task_id=async_result.id, request_id=request_id)
    return async_result.id
