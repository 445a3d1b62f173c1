"""Tag routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from cmms.api.deps import get_db
from cmms.auth.middleware import Viewer, get_viewer
from cmms.responses import success_response
from cmms.schemas.tags import BulkCreateTagsRequest, CreateTagRequest, UpdateTagRequest
from cmms.services import tags as tags_service

router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("")
def list_tags(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    search: Annotated[str | None, Query(max_length=100)] = None,
    type: Annotated[str | None, Query(max_length=50, description="Filter by tag_type")] = None,
) -> dict:
    """Tags with usage_count, most used first."""
    result = tags_service.list_tags(db, viewer.user_id, search=search, tag_type=type)
    return success_response([t.model_dump(mode="json") for t in result])


@router.post("", status_code=201)
def create_tag(
    request: CreateTagRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Errors: E_NAME_TAKEN (400)."""
    result = tags_service.create_tag(db, viewer.user_id, request)
    return success_response(result.model_dump(mode="json"))


# Static paths must be registered before /{tag_id}
@router.get("/autocomplete")
def autocomplete_tags(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    q: Annotated[str, Query(min_length=1, max_length=100, description="Name prefix")],
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> dict:
    result = tags_service.autocomplete_tags(db, viewer.user_id, q, limit)
    return success_response([t.model_dump(mode="json") for t in result])


@router.post("/bulk", status_code=201)
def bulk_create_tags(
    request: BulkCreateTagsRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get-or-create tags by name; returned in input order."""
    result = tags_service.bulk_create_tags(db, viewer.user_id, request)
    return success_response([t.model_dump(mode="json") for t in result])


@router.put("/{tag_id}")
def update_tag(
    tag_id: UUID,
    request: UpdateTagRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Errors: E_TAG_NOT_FOUND (404), E_NAME_TAKEN (400)."""
    result = tags_service.update_tag(db, viewer.user_id, tag_id, request)
    return success_response(result.model_dump(mode="json"))


@router.delete("/{tag_id}", status_code=204)
def delete_tag(
    tag_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    tags_service.delete_tag(db, viewer.user_id, tag_id)
    return Response(status_code=204)
