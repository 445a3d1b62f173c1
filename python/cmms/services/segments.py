"""Segment service layer.

Implements segment capture, editing, tagging and associations.

All operations:
- Are scoped to the owning user; foreign rows look missing (404)
- Validate 0 <= start_offset < end_offset before anything is persisted
- Record color usage whenever a color is assigned or changed
- Run multi-statement mutations inside one transaction

Color changes propagate to direct association children only (segments
this one is the source of), never further down the graph.
"""

from typing import Literal
from uuid import UUID

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from cmms.db.models import Segment, SegmentAssociation, SegmentTag
from cmms.db.session import transaction
from cmms.logging import get_logger
from cmms.schemas.segments import (
    AssociateOut,
    AssociateRequest,
    AssociationOut,
    CreateSegmentRequest,
    RelatedSegmentOut,
    SegmentOut,
    UpdateMarkersRequest,
    UpdateSegmentRequest,
)
from cmms.services import predicates
from cmms.services.colors import assign_color, record_color_usage
from cmms.services.ownership import (
    get_category_or_404,
    get_document_or_404,
    get_segment_or_404,
    get_tag_or_404,
    map_integrity_error,
    require_owned_tags,
    validate_offsets_or_400,
)

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_LIMIT = 50
MAX_LIMIT = 200

# Characters of text used as the title when none is given
TITLE_FALLBACK_LENGTH = 50

_SORT_COLUMNS = {
    "created_at": "s.created_at",
    "updated_at": "s.updated_at",
    "title": "s.title",
    "word_count": "s.word_count",
}


# =============================================================================
# Shared Helpers
# =============================================================================


def association_counts(db: Session, segment_ids: list[UUID]) -> dict[UUID, int]:
    """Number of associations touching each segment, in either direction."""
    if not segment_ids:
        return {}
    rows = db.execute(
        text("""
            SELECT seg_id, COUNT(*) AS n
            FROM (
                SELECT source_segment_id AS seg_id FROM segment_associations
                WHERE source_segment_id = ANY(:ids)
                UNION ALL
                SELECT target_segment_id AS seg_id FROM segment_associations
                WHERE target_segment_id = ANY(:ids)
            ) edges
            GROUP BY seg_id
        """),
        {"ids": segment_ids},
    ).all()
    return {row.seg_id: row.n for row in rows}


def hydrate_segments(db: Session, user_id: UUID, segment_ids: list[UUID]) -> list[SegmentOut]:
    """Load full SegmentOut views for ids, preserving the given order."""
    if not segment_ids:
        return []
    segments = (
        db.execute(
            select(Segment)
            .options(selectinload(Segment.tags))
            .where(Segment.user_id == user_id, Segment.id.in_(segment_ids))
            .execution_options(populate_existing=True)
        )
        .unique()
        .scalars()
        .all()
    )
    by_id = {s.id: s for s in segments}
    counts = association_counts(db, list(by_id))

    out = []
    for segment_id in segment_ids:
        segment = by_id.get(segment_id)
        if segment is None:
            continue
        view = SegmentOut.model_validate(segment)
        view.associations_count = counts.get(segment_id, 0)
        out.append(view)
    return out


def _segment_out(db: Session, user_id: UUID, segment_id: UUID) -> SegmentOut:
    return hydrate_segments(db, user_id, [segment_id])[0]


def _default_title(title: str | None, text_content: str) -> str:
    if title and title.strip():
        return title.strip()
    return text_content[:TITLE_FALLBACK_LENGTH].strip() or text_content[:TITLE_FALLBACK_LENGTH]


def _touch(db: Session, segment_id: UUID) -> None:
    db.execute(update(Segment).where(Segment.id == segment_id).values(updated_at=func.now()))


# =============================================================================
# Service Functions
# =============================================================================


def list_segments(
    db: Session,
    user_id: UUID,
    *,
    category_id: UUID | None = None,
    tag_ids: list[UUID] | None = None,
    search: str | None = None,
    document_id: UUID | None = None,
    is_primary: bool | None = None,
    sort: str = "created_at",
    order: Literal["asc", "desc"] = "desc",
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> tuple[list[SegmentOut], int]:
    """Filtered, paginated segment listing.

    Tag filtering uses AND logic. search matches the full-text vector or a
    title substring.

    Returns:
        Tuple of (page of segments, total matching count).
    """
    pred = predicates.owner_predicate(user_id)
    pred = predicates.with_categories(pred, [category_id] if category_id else None)
    pred = predicates.with_tags(pred, tag_ids, "AND")
    pred = predicates.with_documents(pred, [document_id] if document_id else None)
    pred = predicates.with_primary(pred, is_primary)
    pred = predicates.with_text_or_title(pred, search)

    column = _SORT_COLUMNS.get(sort, "s.created_at")
    direction = "ASC" if order == "asc" else "DESC"
    params = pred.params

    total = db.execute(
        text(f"SELECT COUNT(*) FROM segments s WHERE {pred.sql}"), params
    ).scalar_one()
    ids = db.scalars(
        text(f"""
            SELECT s.id FROM segments s
            WHERE {pred.sql}
            ORDER BY {column} {direction} NULLS LAST, s.id {direction}
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": limit, "offset": offset},
    ).all()
    return hydrate_segments(db, user_id, list(ids)), total


def get_segment(db: Session, user_id: UUID, segment_id: UUID) -> SegmentOut:
    """Raises NotFoundError(E_SEGMENT_NOT_FOUND) if missing or foreign."""
    get_segment_or_404(db, user_id, segment_id)
    return _segment_out(db, user_id, segment_id)


def create_segment(db: Session, user_id: UUID, req: CreateSegmentRequest) -> SegmentOut:
    """Capture a segment.

    The color is the requested one or an assigned one; the title falls back
    to the start of the text. Segment, color usage and tag links are
    written in one transaction.

    Raises:
        InvalidRequestError(E_INVALID_OFFSETS): end_offset <= start_offset.
        NotFoundError: Document (active), category missing or foreign.
        InvalidRequestError(E_INVALID_REQUEST): Unknown tag ids.
    """
    validate_offsets_or_400(req.start_offset, req.end_offset)
    document = get_document_or_404(db, user_id, req.document_id, active_only=True)
    get_category_or_404(db, user_id, req.category_id)
    tag_ids = require_owned_tags(db, user_id, req.tag_ids)

    color = req.color or assign_color(db, user_id, document.id)
    segment = Segment(
        user_id=user_id,
        document_id=document.id,
        category_id=req.category_id,
        start_offset=req.start_offset,
        end_offset=req.end_offset,
        text_content=req.text_content,
        title=_default_title(req.title, req.text_content),
        color=color,
        is_primary=True,
    )

    try:
        with transaction(db):
            db.add(segment)
            db.flush()
            record_color_usage(db, user_id, color)
            for tag_id in tag_ids:
                db.add(SegmentTag(segment_id=segment.id, tag_id=tag_id))
    except IntegrityError as e:
        raise map_integrity_error(e) from e

    logger.info(
        "segment_created",
        segment_id=str(segment.id),
        document_id=str(document.id),
        tag_count=len(tag_ids),
    )
    return _segment_out(db, user_id, segment.id)


def update_segment(
    db: Session, user_id: UUID, segment_id: UUID, req: UpdateSegmentRequest
) -> SegmentOut:
    """Edit title, category, color or primary flag.

    A color change is copied to direct association children and recorded
    as color usage.

    Raises:
        NotFoundError: Segment or new category missing or foreign.
    """
    segment = get_segment_or_404(db, user_id, segment_id)
    update_values = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    if "category_id" in update_values:
        get_category_or_404(db, user_id, update_values["category_id"])
    if "title" in update_values:
        update_values["title"] = update_values["title"].strip() or None

    if not update_values:
        return _segment_out(db, user_id, segment_id)

    new_color = update_values.get("color")
    color_changed = new_color is not None and new_color.upper() != segment.color.upper()

    try:
        with transaction(db):
            db.execute(
                update(Segment)
                .where(Segment.id == segment_id, Segment.user_id == user_id)
                .values(**update_values, updated_at=func.now())
            )
            if color_changed:
                result = db.execute(
                    text("""
                        UPDATE segments child
                        SET color = :color, updated_at = now()
                        FROM segment_associations sa
                        WHERE sa.source_segment_id = :segment_id
                          AND sa.target_segment_id = child.id
                          AND child.user_id = :user_id
                    """),
                    {"color": new_color, "segment_id": segment_id, "user_id": user_id},
                )
                record_color_usage(db, user_id, new_color)
                logger.info(
                    "segment_color_propagated",
                    segment_id=str(segment_id),
                    children=result.rowcount,
                )
    except IntegrityError as e:
        raise map_integrity_error(e) from e

    return _segment_out(db, user_id, segment_id)


def update_markers(
    db: Session, user_id: UUID, segment_id: UUID, req: UpdateMarkersRequest
) -> SegmentOut:
    """Move a segment's offsets (after the user re-marked it in the doc).

    Raises:
        InvalidRequestError(E_INVALID_OFFSETS): end_offset <= start_offset.
    """
    validate_offsets_or_400(req.start_offset, req.end_offset)
    get_segment_or_404(db, user_id, segment_id)
    try:
        with transaction(db):
            db.execute(
                update(Segment)
                .where(Segment.id == segment_id, Segment.user_id == user_id)
                .values(
                    start_offset=req.start_offset,
                    end_offset=req.end_offset,
                    updated_at=func.now(),
                )
            )
    except IntegrityError as e:
        raise map_integrity_error(e) from e
    return _segment_out(db, user_id, segment_id)


def replace_segment_tags(
    db: Session, user_id: UUID, segment_id: UUID, tag_ids: list[UUID]
) -> SegmentOut:
    """Make tag_ids the segment's exact tag set (one transaction)."""
    get_segment_or_404(db, user_id, segment_id)
    unique_ids = require_owned_tags(db, user_id, tag_ids)
    with transaction(db):
        db.execute(delete(SegmentTag).where(SegmentTag.segment_id == segment_id))
        for tag_id in unique_ids:
            db.add(SegmentTag(segment_id=segment_id, tag_id=tag_id))
        _touch(db, segment_id)
    return _segment_out(db, user_id, segment_id)


def add_segment_tags(
    db: Session, user_id: UUID, segment_id: UUID, tag_ids: list[UUID]
) -> SegmentOut:
    """Attach tags; tags already attached are ignored."""
    get_segment_or_404(db, user_id, segment_id)
    unique_ids = require_owned_tags(db, user_id, tag_ids)
    with transaction(db):
        for tag_id in unique_ids:
            db.execute(
                text("""
                    INSERT INTO segment_tags (segment_id, tag_id)
                    VALUES (:segment_id, :tag_id)
                    ON CONFLICT (segment_id, tag_id) DO NOTHING
                """),
                {"segment_id": segment_id, "tag_id": tag_id},
            )
        _touch(db, segment_id)
    return _segment_out(db, user_id, segment_id)


def remove_segment_tag(db: Session, user_id: UUID, segment_id: UUID, tag_id: UUID) -> None:
    """Detach one tag. Detaching a tag that is not attached is a no-op."""
    get_segment_or_404(db, user_id, segment_id)
    get_tag_or_404(db, user_id, tag_id)
    with transaction(db):
        result = db.execute(
            delete(SegmentTag).where(
                SegmentTag.segment_id == segment_id, SegmentTag.tag_id == tag_id
            )
        )
        if result.rowcount:
            _touch(db, segment_id)


def associate_segment(
    db: Session, user_id: UUID, segment_id: UUID, req: AssociateRequest
) -> AssociateOut:
    """Create a non-primary copy of a segment in another span and link them.

    The new target segment inherits the source's category, title and color.

    Raises:
        InvalidRequestError(E_INVALID_OFFSETS): end_offset <= start_offset.
        NotFoundError: Source segment or target document missing or foreign.
        ConflictError(E_ASSOCIATION_EXISTS): Pair already linked.
    """
    validate_offsets_or_400(req.start_offset, req.end_offset)
    source = get_segment_or_404(db, user_id, segment_id)
    target_document = get_document_or_404(db, user_id, req.target_document_id, active_only=True)

    target = Segment(
        user_id=user_id,
        document_id=target_document.id,
        category_id=source.category_id,
        start_offset=req.start_offset,
        end_offset=req.end_offset,
        text_content=req.text_content,
        title=source.title,
        color=source.color,
        is_primary=False,
    )
    try:
        with transaction(db):
            db.add(target)
            db.flush()
            association = SegmentAssociation(
                source_segment_id=source.id,
                target_segment_id=target.id,
                association_type=req.association_type,
            )
            db.add(association)
            db.flush()
            record_color_usage(db, user_id, source.color)
    except IntegrityError as e:
        raise map_integrity_error(e) from e

    logger.info(
        "segment_associated",
        source_segment_id=str(source.id),
        target_segment_id=str(target.id),
        association_type=req.association_type,
    )
    return AssociateOut(
        segment=_segment_out(db, user_id, target.id),
        association_id=association.id,
        association_type=association.association_type,
    )


def list_associations(db: Session, user_id: UUID, segment_id: UUID) -> list[AssociationOut]:
    """Associations in both directions, newest first."""
    get_segment_or_404(db, user_id, segment_id)
    rows = db.execute(
        text("""
            SELECT
                sa.id,
                sa.association_type,
                sa.created_at,
                CASE WHEN sa.source_segment_id = :segment_id
                     THEN 'outgoing' ELSE 'incoming' END AS direction,
                r.id AS related_id,
                r.title AS related_title,
                r.text_content AS related_text,
                r.color AS related_color,
                r.document_id AS related_document_id
            FROM segment_associations sa
            JOIN segments r ON r.id = CASE WHEN sa.source_segment_id = :segment_id
                                           THEN sa.target_segment_id
                                           ELSE sa.source_segment_id END
            WHERE (sa.source_segment_id = :segment_id OR sa.target_segment_id = :segment_id)
              AND r.user_id = :user_id
            ORDER BY sa.created_at DESC, sa.id
        """),
        {"segment_id": segment_id, "user_id": user_id},
    ).all()
    return [
        AssociationOut(
            id=row.id,
            association_type=row.association_type,
            created_at=row.created_at,
            direction=row.direction,
            related_segment_id=row.related_id,
            related_segment=RelatedSegmentOut(
                id=row.related_id,
                title=row.related_title,
                text_content=row.related_text,
                color=row.related_color,
                document_id=row.related_document_id,
            ),
        )
        for row in rows
    ]


def delete_segment(
    db: Session, user_id: UUID, segment_id: UUID, delete_associations: bool = False
) -> None:
    """Delete a segment.

    delete_associations=True also deletes its direct association children;
    otherwise those children are promoted to primary and kept.
    """
    get_segment_or_404(db, user_id, segment_id)
    children = select(SegmentAssociation.target_segment_id).where(
        SegmentAssociation.source_segment_id == segment_id
    )

    with transaction(db):
        if delete_associations:
            result = db.execute(
                delete(Segment)
                .where(Segment.id.in_(children), Segment.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
        else:
            result = db.execute(
                update(Segment)
                .where(Segment.id.in_(children), Segment.user_id == user_id)
                .values(is_primary=True, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
        db.execute(
            delete(Segment)
            .where(Segment.id == segment_id)
            .execution_options(synchronize_session=False)
        )

    db.expire_all()
    logger.info(
        "segment_deleted",
        segment_id=str(segment_id),
        cascaded=delete_associations,
        children=result.rowcount,
    )
