"""Segment routes.

Route handlers for segment capture, editing, tagging and associations.
Routes are transport-only: each calls exactly one service function.
"""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from cmms.api.deps import get_db
from cmms.auth.middleware import Viewer, get_viewer
from cmms.errors import ApiErrorCode, InvalidRequestError
from cmms.responses import paginated_response, success_response
from cmms.schemas.segments import (
    SEGMENT_SORT_KEYS,
    AssociateRequest,
    CreateSegmentRequest,
    SegmentTagsRequest,
    UpdateMarkersRequest,
    UpdateSegmentRequest,
)
from cmms.services import segments as segments_service

router = APIRouter(prefix="/segments", tags=["segments"])


def _parse_uuid_list(raw: str | None, field: str) -> list[UUID] | None:
    """Parse a comma-separated id list from a query parameter."""
    if not raw:
        return None
    try:
        return [UUID(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError as e:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST, f"{field} must be comma-separated UUIDs"
        ) from e


# =============================================================================
# Segment Endpoints
# =============================================================================


@router.get("")
def list_segments(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    category_id: Annotated[UUID | None, Query()] = None,
    tag_ids: Annotated[str | None, Query(description="Comma-separated; all must match")] = None,
    document_id: Annotated[UUID | None, Query()] = None,
    is_primary: Annotated[bool | None, Query()] = None,
    search: Annotated[str | None, Query(max_length=500)] = None,
    sort: Annotated[SEGMENT_SORT_KEYS, Query()] = "created_at",
    order: Annotated[Literal["asc", "desc"], Query()] = "desc",
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """Filtered, paginated segment listing."""
    segments, total = segments_service.list_segments(
        db,
        viewer.user_id,
        category_id=category_id,
        tag_ids=_parse_uuid_list(tag_ids, "tag_ids"),
        search=search,
        document_id=document_id,
        is_primary=is_primary,
        sort=sort,
        order=order,
        limit=limit,
        offset=offset,
    )
    return paginated_response([s.model_dump(mode="json") for s in segments], total, limit, offset)


@router.post("", status_code=201)
def create_segment(
    request: CreateSegmentRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Capture a segment. A color is assigned when none is given.

    Errors:
        E_INVALID_OFFSETS (400): end_offset <= start_offset.
        E_DOCUMENT_NOT_FOUND (404): Document missing, inactive or not owned.
        E_CATEGORY_NOT_FOUND (404): Category missing or not owned.
        E_INVALID_REQUEST (400): Unknown tag ids.
    """
    result = segments_service.create_segment(db, viewer.user_id, request)
    return success_response(result.model_dump(mode="json"))


@router.get("/{segment_id}")
def get_segment(
    segment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = segments_service.get_segment(db, viewer.user_id, segment_id)
    return success_response(result.model_dump(mode="json"))


@router.put("/{segment_id}")
def update_segment(
    segment_id: UUID,
    request: UpdateSegmentRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Edit title, category, color or primary flag.

    A color change is copied to the segment's direct association children.
    """
    result = segments_service.update_segment(db, viewer.user_id, segment_id, request)
    return success_response(result.model_dump(mode="json"))


@router.put("/{segment_id}/markers")
def update_markers(
    segment_id: UUID,
    request: UpdateMarkersRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Errors: E_INVALID_OFFSETS (400), E_SEGMENT_NOT_FOUND (404)."""
    result = segments_service.update_markers(db, viewer.user_id, segment_id, request)
    return success_response(result.model_dump(mode="json"))


@router.delete("/{segment_id}", status_code=204)
def delete_segment(
    segment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    delete_associations: Annotated[
        bool, Query(description="Also delete associated child segments")
    ] = False,
) -> Response:
    """Delete a segment. Children are deleted or promoted to primary."""
    segments_service.delete_segment(db, viewer.user_id, segment_id, delete_associations)
    return Response(status_code=204)


# =============================================================================
# Tag Endpoints
# =============================================================================


@router.put("/{segment_id}/tags")
def replace_tags(
    segment_id: UUID,
    request: SegmentTagsRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Make tag_ids the segment's exact tag set."""
    result = segments_service.replace_segment_tags(
        db, viewer.user_id, segment_id, request.tag_ids
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/{segment_id}/tags")
def add_tags(
    segment_id: UUID,
    request: SegmentTagsRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Attach tags; already-attached tags are ignored."""
    result = segments_service.add_segment_tags(db, viewer.user_id, segment_id, request.tag_ids)
    return success_response(result.model_dump(mode="json"))


@router.delete("/{segment_id}/tags/{tag_id}", status_code=204)
def remove_tag(
    segment_id: UUID,
    tag_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    segments_service.remove_segment_tag(db, viewer.user_id, segment_id, tag_id)
    return Response(status_code=204)


# =============================================================================
# Association Endpoints
# =============================================================================


@router.post("/{segment_id}/associate", status_code=201)
def associate_segment(
    segment_id: UUID,
    request: AssociateRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create a linked, non-primary copy of this segment in another span.

    Errors:
        E_INVALID_OFFSETS (400): end_offset <= start_offset.
        E_DOCUMENT_NOT_FOUND (404): Target document missing or not owned.
        E_ASSOCIATION_EXISTS (409): Already associated.
    """
    result = segments_service.associate_segment(db, viewer.user_id, segment_id, request)
    return success_response(result.model_dump(mode="json"))


@router.get("/{segment_id}/associations")
def list_associations(
    segment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Associations in both directions, newest first."""
    result = segments_service.list_associations(db, viewer.user_id, segment_id)
    return success_response([a.model_dump(mode="json") for a in result])
