"""Tag service layer."""

from uuid import UUID

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cmms.db.models import Tag
from cmms.db.session import transaction
from cmms.errors import ApiErrorCode, InvalidRequestError
from cmms.logging import get_logger
from cmms.schemas.tags import BulkCreateTagsRequest, CreateTagRequest, TagOut, UpdateTagRequest
from cmms.services.ownership import get_tag_or_404, map_integrity_error

logger = get_logger(__name__)

AUTOCOMPLETE_DEFAULT_LIMIT = 10
AUTOCOMPLETE_MAX_LIMIT = 50


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _usage_counts(db: Session, tag_ids: list[UUID]) -> dict[UUID, int]:
    if not tag_ids:
        return {}
    rows = db.execute(
        text("""
            SELECT tag_id, COUNT(*) AS usage_count
            FROM segment_tags
            WHERE tag_id = ANY(:tag_ids)
            GROUP BY tag_id
        """),
        {"tag_ids": tag_ids},
    ).all()
    return {row.tag_id: row.usage_count for row in rows}


def _to_out(tag: Tag, usage_count: int = 0) -> TagOut:
    out = TagOut.model_validate(tag)
    out.usage_count = usage_count
    return out


def _require_unique_name(
    db: Session, user_id: UUID, name: str, message: str, exclude_id: UUID | None = None
) -> None:
    stmt = select(Tag.id).where(Tag.user_id == user_id, Tag.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Tag.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise InvalidRequestError(ApiErrorCode.E_NAME_TAKEN, message)


# =============================================================================
# Service Functions
# =============================================================================


def list_tags(
    db: Session, user_id: UUID, search: str | None = None, tag_type: str | None = None
) -> list[TagOut]:
    """Tags ordered by usage (most used first), then name."""
    where = ["t.user_id = :user_id"]
    params: dict = {"user_id": user_id}
    if search and search.strip():
        where.append("t.name ILIKE :search")
        params["search"] = f"%{_escape_like(search.strip())}%"
    if tag_type:
        where.append("t.tag_type = :tag_type")
        params["tag_type"] = tag_type

    rows = db.execute(
        text(f"""
            SELECT t.id, t.name, t.tag_type, t.created_at, COUNT(st.segment_id) AS usage_count
            FROM tags t
            LEFT JOIN segment_tags st ON st.tag_id = t.id
            WHERE {" AND ".join(where)}
            GROUP BY t.id
            ORDER BY usage_count DESC, t.name ASC
        """),
        params,
    ).all()
    return [
        TagOut(
            id=row.id,
            name=row.name,
            tag_type=row.tag_type,
            created_at=row.created_at,
            usage_count=row.usage_count,
        )
        for row in rows
    ]


def autocomplete_tags(
    db: Session, user_id: UUID, prefix: str, limit: int = AUTOCOMPLETE_DEFAULT_LIMIT
) -> list[TagOut]:
    """Tags whose name starts with prefix (case-insensitive), by name."""
    limit = max(1, min(limit, AUTOCOMPLETE_MAX_LIMIT))
    tags = db.scalars(
        select(Tag)
        .where(Tag.user_id == user_id, Tag.name.ilike(f"{_escape_like(prefix)}%", escape="\\"))
        .order_by(Tag.name.asc())
        .limit(limit)
    ).all()
    counts = _usage_counts(db, [t.id for t in tags])
    return [_to_out(t, counts.get(t.id, 0)) for t in tags]


def create_tag(db: Session, user_id: UUID, req: CreateTagRequest) -> TagOut:
    """Raises InvalidRequestError(E_NAME_TAKEN) on a duplicate name."""
    name = req.name.strip()
    _require_unique_name(db, user_id, name, "Tag with this name already exists")
    tag = Tag(user_id=user_id, name=name, tag_type=req.tag_type)
    try:
        db.add(tag)
        db.flush()
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise map_integrity_error(e) from e
    return _to_out(tag)


def bulk_create_tags(db: Session, user_id: UUID, req: BulkCreateTagsRequest) -> list[TagOut]:
    """Get-or-create tags by name, returned in input order without duplicates.

    Existing tags keep their tag_type.
    """
    names = list(dict.fromkeys(n.strip() for n in req.names if n and n.strip()))
    if not names:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "No tag names given")
    too_long = [n for n in names if len(n) > 100]
    if too_long:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, "Tag names must be at most 100 characters"
        )

    with transaction(db):
        for name in names:
            db.execute(
                text("""
                    INSERT INTO tags (user_id, name, tag_type)
                    VALUES (:user_id, :name, :tag_type)
                    ON CONFLICT (user_id, name) DO NOTHING
                """),
                {"user_id": user_id, "name": name, "tag_type": req.tag_type},
            )

    by_name = {
        t.name: t
        for t in db.scalars(select(Tag).where(Tag.user_id == user_id, Tag.name.in_(names))).all()
    }
    ordered = [by_name[n] for n in names if n in by_name]
    counts = _usage_counts(db, [t.id for t in ordered])
    return [_to_out(t, counts.get(t.id, 0)) for t in ordered]


def update_tag(db: Session, user_id: UUID, tag_id: UUID, req: UpdateTagRequest) -> TagOut:
    """Raises InvalidRequestError(E_NAME_TAKEN) if renamed onto an existing tag."""
    tag = get_tag_or_404(db, user_id, tag_id)
    update_values = req.model_dump(exclude_unset=True)
    if "name" in update_values:
        if update_values["name"] is None:
            del update_values["name"]
        else:
            update_values["name"] = update_values["name"].strip()
            _require_unique_name(
                db, user_id, update_values["name"], "Tag name already exists", exclude_id=tag_id
            )

    if update_values:
        try:
            db.execute(update(Tag).where(Tag.id == tag_id).values(**update_values))
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise map_integrity_error(e) from e
        db.refresh(tag)

    return _to_out(tag, _usage_counts(db, [tag_id]).get(tag_id, 0))


def delete_tag(db: Session, user_id: UUID, tag_id: UUID) -> None:
    """Delete a tag; its segment links go with it (ON DELETE CASCADE)."""
    tag = get_tag_or_404(db, user_id, tag_id)
    with transaction(db):
        db.delete(tag)
    logger.info("tag_deleted", tag_id=str(tag_id))

