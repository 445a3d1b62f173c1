"""Document routes.

Registration and creation talk to Google with the viewer's credentials
(get_document_provider); list/get/delete only touch the database.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from cmms.api.deps import get_db, get_document_provider
from cmms.auth.middleware import Viewer, get_viewer
from cmms.google.client import DocumentProviderBase
from cmms.responses import paginated_response, success_response
from cmms.schemas.documents import DocumentFromSelectionRequest, RegisterDocumentRequest
from cmms.services import documents as documents_service
from cmms.services import sync as sync_service

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("")
def list_documents(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    search: Annotated[str | None, Query(max_length=255, description="Title substring")] = None,
    category_id: Annotated[UUID | None, Query()] = None,
    tag_id: Annotated[UUID | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    """Active documents with segment_count, most recently updated first."""
    documents, total = documents_service.list_documents(
        db,
        viewer.user_id,
        search=search,
        category_id=category_id,
        tag_id=tag_id,
        limit=limit,
        offset=offset,
    )
    return paginated_response([d.model_dump(mode="json") for d in documents], total, limit, offset)


@router.post("", status_code=201)
def register_document(
    request: RegisterDocumentRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    provider: Annotated[DocumentProviderBase, Depends(get_document_provider)],
) -> dict:
    """Register a Google Doc (idempotent).

    Errors:
        E_WATCH_FOLDER_MISSING (400): copy_to_folder without a watch folder.
        E_PROVIDER_NOT_FOUND (404): Google file not found.
        E_DOCUMENT_ACCESS_LOST (403): Google file not shared with the user.
    """
    result = documents_service.register_document(db, provider, viewer.user_id, request)
    return success_response(result.model_dump(mode="json"))


# Must be registered before /{document_id} routes
@router.post("/from-selection", status_code=201)
def create_from_selection(
    request: DocumentFromSelectionRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    provider: Annotated[DocumentProviderBase, Depends(get_document_provider)],
) -> dict:
    """Create a new Google Doc in the watch folder from selected text."""
    result = documents_service.create_document_from_selection(
        db, provider, viewer.user_id, request
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/{document_id}")
def get_document(
    document_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Active document with its segments in document order."""
    result = documents_service.get_document(db, viewer.user_id, document_id)
    return success_response(result.model_dump(mode="json"))


@router.delete("/{document_id}", status_code=204)
def delete_document(
    document_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    hard: Annotated[bool, Query(description="Delete the row and its segments")] = False,
) -> Response:
    documents_service.delete_document(db, viewer.user_id, document_id, hard=hard)
    return Response(status_code=204)


@router.post("/{document_id}/sync")
def sync_document(
    document_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    provider: Annotated[DocumentProviderBase, Depends(get_document_provider)],
) -> dict:
    """Reconcile this document against Google now. Same as POST /sync/document/{id}."""
    result = sync_service.sync_single_document(db, provider, viewer.user_id, document_id)
    return success_response(result.model_dump(mode="json"))
