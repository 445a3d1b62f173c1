"""User preference routes."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cmms.api.deps import get_db
from cmms.auth.middleware import Viewer, get_viewer
from cmms.responses import success_response
from cmms.schemas.users import UpdatePreferencesRequest
from cmms.services import users as users_service

router = APIRouter(prefix="/preferences", tags=["preferences"])


@router.get("")
def get_preferences(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = users_service.get_preferences(db, viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.put("")
def update_preferences(
    request: UpdatePreferencesRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Replace palette, auto-assign flag and/or theme.

    Errors:
        E_INVALID_REQUEST (400): A palette entry is not #RRGGBB.
    """
    result = users_service.update_preferences(db, viewer.user_id, request)
    return success_response(result.model_dump(mode="json"))
