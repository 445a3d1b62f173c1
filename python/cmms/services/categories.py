"""Category service layer.

Categories order a user's material (Bit, One-Liner, ...). Segments never
cascade with their category: deleting a non-empty category requires a
migration target, and the migration plus the delete run in one transaction.
"""

from uuid import UUID

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cmms.db.models import Category, Segment
from cmms.db.session import transaction
from cmms.errors import ApiErrorCode, InvalidRequestError
from cmms.logging import get_logger
from cmms.schemas.categories import (
    CategoryOut,
    CreateCategoryRequest,
    ReorderCategoriesRequest,
    UpdateCategoryRequest,
)
from cmms.services.ownership import get_category_or_404, map_integrity_error

logger = get_logger(__name__)

SORT_STEP = 10


# =============================================================================
# Shared Helpers
# =============================================================================


def _segment_count(db: Session, category_id: UUID) -> int:
    return db.scalar(
        select(func.count()).select_from(Segment).where(Segment.category_id == category_id)
    )


def _to_out(category: Category, segment_count: int) -> CategoryOut:
    out = CategoryOut.model_validate(category)
    out.segment_count = segment_count
    return out


def _require_unique_name(
    db: Session, user_id: UUID, name: str, exclude_id: UUID | None = None
) -> None:
    stmt = select(Category.id).where(Category.user_id == user_id, Category.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Category.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise InvalidRequestError(ApiErrorCode.E_NAME_TAKEN, "Category name must be unique")


# =============================================================================
# Service Functions
# =============================================================================


def list_categories(db: Session, user_id: UUID) -> list[CategoryOut]:
    """All of the user's categories by sort_order, with segment counts."""
    rows = db.execute(
        text("""
            SELECT c.id, COUNT(s.id) AS segment_count
            FROM categories c
            LEFT JOIN segments s ON s.category_id = c.id
            WHERE c.user_id = :user_id
            GROUP BY c.id
        """),
        {"user_id": user_id},
    ).all()
    counts = {row.id: row.segment_count for row in rows}

    categories = db.scalars(
        select(Category)
        .where(Category.user_id == user_id)
        .order_by(Category.sort_order.asc(), Category.name.asc())
    ).all()
    return [_to_out(c, counts.get(c.id, 0)) for c in categories]


def get_category(db: Session, user_id: UUID, category_id: UUID) -> CategoryOut:
    category = get_category_or_404(db, user_id, category_id)
    return _to_out(category, _segment_count(db, category_id))


def create_category(db: Session, user_id: UUID, req: CreateCategoryRequest) -> CategoryOut:
    """Create a category at the end of the ordering.

    Raises:
        InvalidRequestError(E_NAME_TAKEN): Name already used by this user.
    """
    name = req.name.strip()
    _require_unique_name(db, user_id, name)

    max_sort = db.scalar(
        select(func.coalesce(func.max(Category.sort_order), 0)).where(
            Category.user_id == user_id
        )
    )
    category = Category(
        user_id=user_id,
        name=name,
        description=req.description,
        icon=req.icon,
        sort_order=max_sort + SORT_STEP,
        is_default=False,
    )
    try:
        db.add(category)
        db.flush()
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise map_integrity_error(e) from e

    logger.info("category_created", category_id=str(category.id))
    return _to_out(category, 0)


def update_category(
    db: Session, user_id: UUID, category_id: UUID, req: UpdateCategoryRequest
) -> CategoryOut:
    """Rename or re-describe a category.

    Raises:
        NotFoundError(E_CATEGORY_NOT_FOUND): Category missing or foreign.
        InvalidRequestError(E_NAME_TAKEN): New name already used.
    """
    category = get_category_or_404(db, user_id, category_id)
    update_values = req.model_dump(exclude_unset=True)
    if "name" in update_values:
        if update_values["name"] is None:
            del update_values["name"]
        else:
            update_values["name"] = update_values["name"].strip()
            _require_unique_name(db, user_id, update_values["name"], exclude_id=category_id)

    if update_values:
        try:
            db.execute(
                update(Category)
                .where(Category.id == category_id)
                .values(**update_values, updated_at=func.now())
            )
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise map_integrity_error(e) from e
        db.refresh(category)

    return _to_out(category, _segment_count(db, category_id))


def reorder_categories(
    db: Session, user_id: UUID, req: ReorderCategoriesRequest
) -> list[CategoryOut]:
    """Apply a new ordering: position i gets sort_order (i + 1) * 10.

    Raises:
        InvalidRequestError(E_INVALID_REQUEST): Duplicate ids, or any id not
            owned by the user.
    """
    ids = req.category_ids
    if len(set(ids)) != len(ids):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Duplicate category ids")

    owned = set(
        db.scalars(
            select(Category.id).where(Category.user_id == user_id, Category.id.in_(ids))
        ).all()
    )
    if owned != set(ids):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "One or more categories not found"
        )

    with transaction(db):
        for position, category_id in enumerate(ids):
            db.execute(
                update(Category)
                .where(Category.id == category_id, Category.user_id == user_id)
                .values(sort_order=(position + 1) * SORT_STEP, updated_at=func.now())
            )

    logger.info("categories_reordered", count=len(ids))
    return list_categories(db, user_id)


def delete_category(
    db: Session, user_id: UUID, category_id: UUID, migrate_to: UUID | None = None
) -> None:
    """Delete a category, first moving its segments to migrate_to if given.

    Raises:
        NotFoundError(E_CATEGORY_NOT_FOUND): Category missing or foreign.
        InvalidRequestError(E_INVALID_REQUEST): migrate_to is the category
            itself, or does not exist.
        InvalidRequestError(E_CATEGORY_NOT_EMPTY): Segments remain and no
            migrate_to was given.
    """
    category = get_category_or_404(db, user_id, category_id)

    if migrate_to is not None:
        if migrate_to == category_id:
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_REQUEST,
                "Cannot migrate to the same category being deleted",
            )
        target = db.get(Category, migrate_to)
        if target is None or target.user_id != user_id:
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_REQUEST, "Target category for migration not found"
            )

    count = _segment_count(db, category_id)
    if count > 0 and migrate_to is None:
        raise InvalidRequestError(
            ApiErrorCode.E_CATEGORY_NOT_EMPTY,
            f"Cannot delete category with {count} segments. "
            "Provide 'migrate_to' query parameter.",
        )

    try:
        with transaction(db):
            if count > 0:
                db.execute(
                    update(Segment)
                    .where(Segment.category_id == category_id, Segment.user_id == user_id)
                    .values(category_id=migrate_to, updated_at=func.now())
                )
            db.delete(category)
    except IntegrityError as e:
        # A segment was added to the category concurrently
        raise map_integrity_error(e) from e

    logger.info(
        "category_deleted",
        category_id=str(category_id),
        migrated_segments=count,
    )
