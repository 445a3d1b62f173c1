"""Category routes.

Routes are transport-only: each calls exactly one service function.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from cmms.api.deps import get_db
from cmms.auth.middleware import Viewer, get_viewer
from cmms.responses import success_response
from cmms.schemas.categories import (
    CreateCategoryRequest,
    ReorderCategoriesRequest,
    UpdateCategoryRequest,
)
from cmms.services import categories as categories_service

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("")
def list_categories(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """All categories by sort_order, each with its segment_count."""
    result = categories_service.list_categories(db, viewer.user_id)
    return success_response([c.model_dump(mode="json") for c in result])


@router.post("", status_code=201)
def create_category(
    request: CreateCategoryRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create a category at the end of the ordering.

    Errors:
        E_NAME_TAKEN (400): Name already used.
    """
    result = categories_service.create_category(db, viewer.user_id, request)
    return success_response(result.model_dump(mode="json"))


# Must be registered before /{category_id} routes
@router.put("/reorder")
def reorder_categories(
    request: ReorderCategoriesRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Apply a new ordering given as the full list of ids.

    Errors:
        E_INVALID_REQUEST (400): Duplicate or unknown ids.
    """
    result = categories_service.reorder_categories(db, viewer.user_id, request)
    return success_response([c.model_dump(mode="json") for c in result])


@router.get("/{category_id}")
def get_category(
    category_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = categories_service.get_category(db, viewer.user_id, category_id)
    return success_response(result.model_dump(mode="json"))


@router.put("/{category_id}")
def update_category(
    category_id: UUID,
    request: UpdateCategoryRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Errors: E_CATEGORY_NOT_FOUND (404), E_NAME_TAKEN (400)."""
    result = categories_service.update_category(db, viewer.user_id, category_id, request)
    return success_response(result.model_dump(mode="json"))


@router.delete("/{category_id}", status_code=204)
def delete_category(
    category_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    migrate_to: Annotated[
        UUID | None, Query(description="Category receiving this category's segments")
    ] = None,
) -> Response:
    """Delete a category, moving its segments to migrate_to first.

    Errors:
        E_CATEGORY_NOT_FOUND (404): Category missing or not owned.
        E_CATEGORY_NOT_EMPTY (400): Segments remain and no migrate_to given.
        E_INVALID_REQUEST (400): migrate_to is the same category or unknown.
    """
    categories_service.delete_category(db, viewer.user_id, category_id, migrate_to)
    return Response(status_code=204)
