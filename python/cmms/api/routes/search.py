"""Search route."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cmms.api.deps import get_db
from cmms.auth.middleware import Viewer, get_viewer
from cmms.responses import success_response
from cmms.schemas.search import SearchRequest
from cmms.services.search import search_segments

router = APIRouter(prefix="/search", tags=["search"])


@router.post("")
def search(
    request: SearchRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Ranked full-text search with filters and facets.

    An empty query browses every segment matching the filters. The body is
    {results, total, facets: {categories, tags}}.
    """
    result = search_segments(db, viewer.user_id, request)
    return success_response(result.model_dump(mode="json"))
