"""Owner-scoped lookups shared by the service modules.

Every entity belongs to exactly one user. A row owned by someone else is
reported exactly like a missing row, so ids cannot be probed.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cmms.db.models import Category, Document, Segment, Tag, User
from cmms.errors import ApiError, ApiErrorCode, InvalidRequestError, NotFoundError
from cmms.logging import get_logger

logger = get_logger(__name__)


def get_user_or_404(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError(ApiErrorCode.E_NOT_FOUND, "User not found")
    return user


def get_document_or_404(
    db: Session, user_id: UUID, document_id: UUID, *, active_only: bool = False
) -> Document:
    """Load a document owned by user_id.

    Raises:
        NotFoundError(E_DOCUMENT_NOT_FOUND): Missing, foreign, or inactive
            when active_only is set.
    """
    document = db.get(Document, document_id)
    if document is None or document.user_id != user_id:
        raise NotFoundError(ApiErrorCode.E_DOCUMENT_NOT_FOUND, "Document not found")
    if active_only and not document.is_active:
        raise NotFoundError(ApiErrorCode.E_DOCUMENT_NOT_FOUND, "Document not found")
    return document


def get_category_or_404(db: Session, user_id: UUID, category_id: UUID) -> Category:
    category = db.get(Category, category_id)
    if category is None or category.user_id != user_id:
        raise NotFoundError(ApiErrorCode.E_CATEGORY_NOT_FOUND, "Category not found")
    return category


def get_tag_or_404(db: Session, user_id: UUID, tag_id: UUID) -> Tag:
    tag = db.get(Tag, tag_id)
    if tag is None or tag.user_id != user_id:
        raise NotFoundError(ApiErrorCode.E_TAG_NOT_FOUND, "Tag not found")
    return tag


def get_segment_or_404(db: Session, user_id: UUID, segment_id: UUID) -> Segment:
    segment = db.get(Segment, segment_id)
    if segment is None or segment.user_id != user_id:
        raise NotFoundError(ApiErrorCode.E_SEGMENT_NOT_FOUND, "Segment not found")
    return segment


def require_owned_tags(db: Session, user_id: UUID, tag_ids: list[UUID]) -> list[UUID]:
    """Deduplicate tag_ids and check every one belongs to the user.

    Raises:
        InvalidRequestError(E_INVALID_REQUEST): If any tag is missing or foreign.
    """
    unique_ids = list(dict.fromkeys(tag_ids))
    if not unique_ids:
        return []
    found = set(
        db.scalars(select(Tag.id).where(Tag.user_id == user_id, Tag.id.in_(unique_ids))).all()
    )
    missing = [str(t) for t in unique_ids if t not in found]
    if missing:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, f"Unknown tag ids: {', '.join(missing)}"
        )
    return unique_ids


def validate_offsets_or_400(start_offset: int, end_offset: int) -> None:
    """Enforce 0 <= start_offset < end_offset before anything is persisted.

    Raises:
        InvalidRequestError(E_INVALID_OFFSETS): If the range is empty or reversed.
    """
    if start_offset < 0 or end_offset <= start_offset:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_OFFSETS, "end_offset must be greater than start_offset"
        )


# Constraint name -> (code, message) for user-facing integrity failures
_CONSTRAINT_ERRORS: dict[str, tuple[ApiErrorCode, str]] = {
    "uq_categories_user_name": (ApiErrorCode.E_NAME_TAKEN, "Category name must be unique"),
    "uq_tags_user_name": (ApiErrorCode.E_NAME_TAKEN, "Tag with this name already exists"),
    "uq_segment_associations_pair": (
        ApiErrorCode.E_ASSOCIATION_EXISTS,
        "These segments are already associated",
    ),
    "ck_segments_offsets_ordered": (
        ApiErrorCode.E_INVALID_OFFSETS,
        "end_offset must be greater than start_offset",
    ),
    "ck_segments_start_nonneg": (
        ApiErrorCode.E_INVALID_OFFSETS,
        "start_offset must not be negative",
    ),
    "ck_segments_color_hex": (ApiErrorCode.E_INVALID_COLOR, "Color must be #RRGGBB"),
    "segments_category_id_fkey": (
        ApiErrorCode.E_CATEGORY_NOT_EMPTY,
        "Category still has segments",
    ),
}


def map_integrity_error(e: IntegrityError) -> ApiError:
    """Map IntegrityError to an ApiError based on the violated constraint."""
    constraint_name = None
    diag = getattr(e.orig, "diag", None)
    if diag is not None:
        constraint_name = getattr(diag, "constraint_name", None)
    if constraint_name is None:
        msg = str(e.orig) if e.orig else str(e)
        constraint_name = next((name for name in _CONSTRAINT_ERRORS if name in msg), None)

    if constraint_name in _CONSTRAINT_ERRORS:
        code, message = _CONSTRAINT_ERRORS[constraint_name]
        return ApiError(code, message)

    logger.error("unknown_integrity_error", constraint=constraint_name, error=str(e.orig))
    return ApiError(ApiErrorCode.E_INTERNAL, "Database constraint violation")
