"""Document service layer.

Documents are registrations of Google Docs. A document is never hard
deleted implicitly: losing access or dropping out of the watch folder only
deactivates it, and registering it again reactivates the same row with its
segments intact.
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cmms.db.models import Document, Segment
from cmms.db.session import transaction
from cmms.errors import ApiErrorCode, InvalidRequestError
from cmms.google.client import (
    GOOGLE_DOC_MIME_TYPE,
    DocumentProviderBase,
    FileMetadata,
    ProviderError,
)
from cmms.logging import get_logger
from cmms.schemas.documents import (
    DocumentDetailOut,
    DocumentFromSelectionRequest,
    DocumentOut,
    DocumentSegmentOut,
    RegisterDocumentRequest,
)
from cmms.services.ownership import get_document_or_404, get_user_or_404, map_integrity_error

logger = get_logger(__name__)

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


# =============================================================================
# Shared Helpers
# =============================================================================


def _segment_counts(db: Session, document_ids: list[UUID]) -> dict[UUID, int]:
    if not document_ids:
        return {}
    rows = db.execute(
        select(Segment.document_id, func.count())
        .where(Segment.document_id.in_(document_ids))
        .group_by(Segment.document_id)
    ).all()
    return {document_id: count for document_id, count in rows}


def _to_out(document: Document, segment_count: int) -> DocumentOut:
    out = DocumentOut.model_validate(document)
    out.segment_count = segment_count
    return out


def _require_watched_folder(db: Session, user_id: UUID) -> str:
    user = get_user_or_404(db, user_id)
    if not user.watched_folder_id:
        raise InvalidRequestError(
            ApiErrorCode.E_WATCH_FOLDER_MISSING, "User has no watched folder configured"
        )
    return user.watched_folder_id


def register_from_metadata(
    db: Session, user_id: UUID, meta: FileMetadata
) -> tuple[Document, bool]:
    """Insert or refresh the document row for a Drive file. Does not commit.

    Returns:
        Tuple of (document, added) where added is True for a new row or a
        reactivated soft-deleted one.
    """
    document = db.scalar(
        select(Document).where(Document.user_id == user_id, Document.google_file_id == meta.id)
    )
    if document is None:
        document = Document(
            user_id=user_id,
            google_file_id=meta.id,
            title=meta.name or "Untitled",
            google_folder_id=meta.parents[0] if meta.parents else None,
            mime_type=meta.mime_type,
            last_modified_at=meta.modified_time,
            is_active=True,
        )
        db.add(document)
        db.flush()
        return document, True

    added = not document.is_active
    document.is_active = True
    document.title = meta.name or document.title
    if meta.parents:
        document.google_folder_id = meta.parents[0]
    if meta.mime_type:
        document.mime_type = meta.mime_type
    if meta.modified_time is not None:
        document.last_modified_at = meta.modified_time
    document.updated_at = datetime.now(UTC)
    db.flush()
    return document, added


def tag_drive_file(provider: DocumentProviderBase, document: Document) -> None:
    """Mark the Drive file as registered. Failure is logged, not raised."""
    try:
        provider.set_app_properties(
            document.google_file_id,
            {"cmms_registered": "true", "cmms_doc_id": str(document.id)},
        )
    except ProviderError as e:
        logger.warning(
            "app_properties_update_failed",
            document_id=str(document.id),
            status_code=e.status_code,
            error=e.message,
        )


# =============================================================================
# Service Functions
# =============================================================================


def list_documents(
    db: Session,
    user_id: UUID,
    *,
    search: str | None = None,
    category_id: UUID | None = None,
    tag_id: UUID | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> tuple[list[DocumentOut], int]:
    """Active documents, most recently updated first.

    category_id / tag_id keep documents holding at least one segment in
    that category / with that tag. total respects every filter.
    """
    where = ["d.user_id = :user_id", "d.is_active = true"]
    params: dict = {"user_id": user_id}
    if search and search.strip():
        term = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        where.append("d.title ILIKE :search")
        params["search"] = f"%{term}%"
    if category_id is not None:
        where.append(
            "EXISTS (SELECT 1 FROM segments s"
            " WHERE s.document_id = d.id AND s.category_id = :category_id)"
        )
        params["category_id"] = category_id
    if tag_id is not None:
        where.append(
            "EXISTS (SELECT 1 FROM segments s JOIN segment_tags st ON st.segment_id = s.id"
            " WHERE s.document_id = d.id AND st.tag_id = :tag_id)"
        )
        params["tag_id"] = tag_id
    where_sql = " AND ".join(where)

    total = db.execute(
        text(f"SELECT COUNT(*) FROM documents d WHERE {where_sql}"), params
    ).scalar_one()
    ids = db.scalars(
        text(f"""
            SELECT d.id FROM documents d
            WHERE {where_sql}
            ORDER BY d.updated_at DESC, d.id DESC
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": limit, "offset": offset},
    ).all()

    documents = {d.id: d for d in db.scalars(select(Document).where(Document.id.in_(ids))).all()}
    counts = _segment_counts(db, list(ids))
    return [_to_out(documents[i], counts.get(i, 0)) for i in ids if i in documents], total


def get_document(db: Session, user_id: UUID, document_id: UUID) -> DocumentDetailOut:
    """Active document with its segments in document order."""
    document = get_document_or_404(db, user_id, document_id, active_only=True)
    segments = db.scalars(
        select(Segment)
        .where(Segment.document_id == document_id, Segment.user_id == user_id)
        .order_by(Segment.start_offset.asc(), Segment.id.asc())
    ).all()
    return DocumentDetailOut(
        **_to_out(document, len(segments)).model_dump(),
        segments=[DocumentSegmentOut.model_validate(s) for s in segments],
    )


def register_document(
    db: Session, provider: DocumentProviderBase, user_id: UUID, req: RegisterDocumentRequest
) -> DocumentOut:
    """Register a Google Doc, optionally copying it into the watch folder.

    Registering an already-registered file returns the existing row
    (reactivated if it had been soft deleted).

    Raises:
        InvalidRequestError(E_WATCH_FOLDER_MISSING): copy_to_folder without
            a configured watch folder.
        InvalidRequestError(E_INVALID_REQUEST): The file is not a Google Doc.
        ProviderError: Drive lookup or copy failed.
    """
    file_id = req.google_file_id.strip()

    if not req.copy_to_folder:
        existing = db.scalar(
            select(Document).where(
                Document.user_id == user_id, Document.google_file_id == file_id
            )
        )
        if existing is not None:
            if not existing.is_active:
                db.execute(
                    update(Document)
                    .where(Document.id == existing.id)
                    .values(is_active=True, updated_at=func.now())
                )
                db.commit()
                db.refresh(existing)
                logger.info("document_reactivated", document_id=str(existing.id))
            return _to_out(existing, _segment_counts(db, [existing.id]).get(existing.id, 0))

    if req.copy_to_folder:
        folder_id = _require_watched_folder(db, user_id)
        meta = provider.copy_file(file_id, folder_id)
    else:
        meta = provider.get_file_metadata(file_id)

    if meta.mime_type and meta.mime_type != GOOGLE_DOC_MIME_TYPE:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "Only Google Docs can be registered"
        )

    try:
        with transaction(db):
            document, _ = register_from_metadata(db, user_id, meta)
    except IntegrityError as e:
        raise map_integrity_error(e) from e

    tag_drive_file(provider, document)
    logger.info(
        "document_registered",
        document_id=str(document.id),
        copied=req.copy_to_folder,
    )
    return _to_out(document, _segment_counts(db, [document.id]).get(document.id, 0))


def create_document_from_selection(
    db: Session,
    provider: DocumentProviderBase,
    user_id: UUID,
    req: DocumentFromSelectionRequest,
) -> DocumentOut:
    """Create a new Google Doc from selected text in the watch folder and register it.

    Raises:
        InvalidRequestError(E_WATCH_FOLDER_MISSING): No watch folder configured.
        ProviderError: The source file is inaccessible or creation failed.
    """
    folder_id = _require_watched_folder(db, user_id)
    provider.get_file_metadata(req.source_google_file_id)
    meta = provider.create_document(req.title.strip(), req.selected_text, folder_id)

    with transaction(db):
        document, _ = register_from_metadata(db, user_id, meta)

    tag_drive_file(provider, document)
    logger.info(
        "document_created_from_selection",
        document_id=str(document.id),
        chars=len(req.selected_text),
    )
    return _to_out(document, 0)


def delete_document(db: Session, user_id: UUID, document_id: UUID, hard: bool = False) -> None:
    """Soft delete (deactivate) a document, or hard delete it with its segments."""
    document = get_document_or_404(db, user_id, document_id)
    with transaction(db):
        if hard:
            db.delete(document)
        else:
            db.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(is_active=False, updated_at=func.now())
            )
    logger.info("document_deleted", document_id=str(document_id), hard=hard)
