"""Single-document reconciliation.

Brings a document's stored segments into agreement with the live Google
Doc. Each segment is located through its named range
(cmms_segment_<segment id>); the live text under that range becomes the
segment's text and the range bounds become its offsets.

Outcomes:
- Range found, text or offsets differ: segment updated in place
- Range missing or empty: segment reported as an orphan, left untouched
- Document deleted or unshared: document deactivated, failed result returned

All segment and document updates of one run commit together or not at all.
Every run writes one sync_log entry.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cmms.db.models import Document, Segment, SyncAction, SyncStatus
from cmms.db.session import transaction
from cmms.errors import ApiErrorCode, InvalidRequestError
from cmms.google.client import (
    DocumentProviderBase,
    NamedRangeSpan,
    ProviderError,
    segment_range_name,
)
from cmms.logging import get_logger
from cmms.schemas.sync import MarkerRepairResult, OrphanedSegment, SyncConflict, SyncResult
from cmms.services.ownership import get_document_or_404, get_segment_or_404
from cmms.services.sync_log import write_sync_log

logger = get_logger(__name__)

MARKER_MISSING_DETAILS = "Named range not found in Google Doc"
MARKER_EMPTY_DETAILS = "Named range no longer covers any text"


def _usable_span(span: NamedRangeSpan, text_length: int) -> NamedRangeSpan | None:
    """Clamp a range to the text; None when nothing is left of it."""
    start = max(span.start, 0)
    end = min(span.end, text_length)
    if end <= start:
        return None
    return NamedRangeSpan(start, end)


def _log_failure(
    db: Session, user_id: UUID, document_id: UUID, action: SyncAction, error: str
) -> None:
    write_sync_log(db, user_id, action, SyncStatus.failed, {"error": error}, document_id)
    db.commit()


def sync_document(
    db: Session, provider: DocumentProviderBase, user_id: UUID, document_id: UUID
) -> SyncResult:
    """Reconcile one document against its live Google Doc.

    Access loss (403/404 from Google) is an expected outcome: the document
    is deactivated and a failed result is returned instead of raising.

    Raises:
        NotFoundError(E_DOCUMENT_NOT_FOUND): Document missing or foreign.
        ProviderError: Any other Google failure (nothing is changed).
    """
    document = get_document_or_404(db, user_id, document_id)
    result = SyncResult(document_id=document_id, status="success")

    try:
        snapshot = provider.fetch_document(document.google_file_id)
    except ProviderError as e:
        if not e.is_access_lost:
            _log_failure(db, user_id, document_id, SyncAction.single_sync, e.message)
            raise
        db.execute(
            update(Document)
            .where(Document.id == document_id)
            .values(is_active=False, updated_at=func.now())
        )
        _log_failure(db, user_id, document_id, SyncAction.single_sync, e.message)
        logger.warning(
            "document_access_lost",
            document_id=str(document_id),
            status_code=e.status_code,
        )
        result.status = "failed"
        result.conflicts.append(
            SyncConflict(segment_id="all", type="document_access_lost", details=e.message)
        )
        return result
    except Exception as e:
        logger.error(
            "sync_document_fetch_failed",
            document_id=str(document_id),
            error_type=type(e).__name__,
        )
        _log_failure(db, user_id, document_id, SyncAction.single_sync, str(e))
        raise

    segments = db.scalars(
        select(Segment)
        .where(Segment.document_id == document_id, Segment.user_id == user_id)
        .order_by(Segment.start_offset.asc(), Segment.id.asc())
    ).all()

    try:
        with transaction(db):
            for segment in segments:
                raw_span = snapshot.ranges.get(str(segment.id))
                span = _usable_span(raw_span, len(snapshot.text)) if raw_span else None
                if span is None:
                    result.orphaned_segments.append(
                        OrphanedSegment(
                            id=segment.id, title=segment.title, last_text=segment.text_content
                        )
                    )
                    result.conflicts.append(
                        SyncConflict(
                            segment_id=str(segment.id),
                            type="marker_missing",
                            details=MARKER_EMPTY_DETAILS if raw_span else MARKER_MISSING_DETAILS,
                        )
                    )
                    continue

                live_text = snapshot.text[span.start : span.end]
                text_changed = live_text != segment.text_content
                moved = (span.start, span.end) != (segment.start_offset, segment.end_offset)
                if not (text_changed or moved):
                    continue

                db.execute(
                    update(Segment)
                    .where(Segment.id == segment.id)
                    .values(
                        start_offset=span.start,
                        end_offset=span.end,
                        text_content=live_text,
                        updated_at=func.now(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if text_changed:
                    result.updated_segments += 1
                else:
                    result.repositioned_segments += 1

            db.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(
                    title=snapshot.title or document.title,
                    last_synced_at=func.now(),
                    updated_at=func.now(),
                )
            )
            write_sync_log(
                db,
                user_id,
                SyncAction.single_sync,
                SyncStatus.success,
                result.model_dump(mode="json"),
                document_id,
            )
    except Exception as e:
        logger.error(
            "sync_document_failed",
            document_id=str(document_id),
            error_type=type(e).__name__,
        )
        _log_failure(db, user_id, document_id, SyncAction.single_sync, str(e))
        raise

    db.expire_all()
    logger.info(
        "sync_document_completed",
        document_id=str(document_id),
        updated=result.updated_segments,
        repositioned=result.repositioned_segments,
        orphaned=len(result.orphaned_segments),
    )
    return result


def _find_nearest(haystack: str, needle: str, near: int) -> int | None:
    """Position of the occurrence of needle closest to near, if any."""
    best: int | None = None
    position = haystack.find(needle)
    while position != -1:
        if best is None or abs(position - near) < abs(best - near):
            best = position
        position = haystack.find(needle, position + 1)
    return best


def repair_segment_marker(
    db: Session, provider: DocumentProviderBase, user_id: UUID, segment_id: UUID
) -> MarkerRepairResult:
    """Re-anchor an orphaned segment by finding its stored text in the live doc.

    When the text occurs more than once, the occurrence closest to the
    stored start_offset wins. A new named range is created over it and the
    stored offsets follow.

    Raises:
        NotFoundError: Segment or its (active) document missing or foreign.
        InvalidRequestError(E_MARKER_TEXT_NOT_FOUND): Text no longer in the doc.
        ProviderError: Google read or update failed.
    """
    segment = get_segment_or_404(db, user_id, segment_id)
    document = get_document_or_404(db, user_id, segment.document_id, active_only=True)
    range_name = segment_range_name(segment.id)

    snapshot = provider.fetch_document(document.google_file_id)
    start = _find_nearest(snapshot.text, segment.text_content, segment.start_offset)
    if start is None:
        _log_failure(
            db, user_id, document.id, SyncAction.marker_repair, "Segment text not found"
        )
        raise InvalidRequestError(
            ApiErrorCode.E_MARKER_TEXT_NOT_FOUND,
            "Segment text no longer appears in the document",
        )
    end = start + len(segment.text_content)

    provider.create_named_range(document.google_file_id, range_name, start, end)

    with transaction(db):
        db.execute(
            update(Segment)
            .where(Segment.id == segment.id)
            .values(start_offset=start, end_offset=end, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        write_sync_log(
            db,
            user_id,
            SyncAction.marker_repair,
            SyncStatus.success,
            {
                "segment_id": str(segment.id),
                "start_offset": start,
                "end_offset": end,
                "repaired_at": datetime.now(UTC).isoformat(),
            },
            document.id,
        )

    db.expire_all()
    logger.info("segment_marker_repaired", segment_id=str(segment.id), document_id=str(document.id))
    return MarkerRepairResult(
        segment_id=segment.id,
        document_id=document.id,
        start_offset=start,
        end_offset=end,
        range_name=range_name,
    )
