"""Sync routes.

Errors common to every sync trigger:
    E_SYNC_IN_PROGRESS (409): Another sync for this user is running.
    E_GOOGLE_NOT_LINKED (400): No usable Google credentials.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cmms.api.deps import get_db, get_document_provider
from cmms.auth.middleware import Viewer, get_viewer
from cmms.google.client import DocumentProviderBase
from cmms.logging import get_request_id
from cmms.responses import success_response
from cmms.schemas.sync import BackgroundSyncOut
from cmms.services import sync as sync_service

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/full", response_model=None)
def full_sync(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    provider: Annotated[DocumentProviderBase, Depends(get_document_provider)],
    background: Annotated[bool, Query(description="Run on the worker and return 202")] = False,
) -> dict | JSONResponse:
    """Sync the whole watch folder.

    With background=true the sync is queued and 202 is returned with the
    task id; otherwise the aggregate result is returned.

    Errors:
        E_WATCH_FOLDER_MISSING (400): No watch folder configured.
        E_SYNC_UNAVAILABLE (503): Background queue unreachable.
    """
    if background:
        task_id = sync_service.enqueue_full_sync(db, viewer.user_id, get_request_id())
        return JSONResponse(
            status_code=202,
            content=success_response(BackgroundSyncOut(task_id=task_id).model_dump(mode="json")),
        )

    result = sync_service.sync_all_documents(db, provider, viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.get("/status")
def sync_status(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = sync_service.get_sync_status(db, viewer.user_id)
    return success_response(result.model_dump(mode="json"))


@router.post("/document/{document_id}")
def sync_document(
    document_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    provider: Annotated[DocumentProviderBase, Depends(get_document_provider)],
) -> dict:
    """Reconcile one document.

    Access loss is reported in the result (status "failed"), not as an error.

    Errors:
        E_DOCUMENT_NOT_FOUND (404): Document missing or not owned.
    """
    result = sync_service.sync_single_document(db, provider, viewer.user_id, document_id)
    return success_response(result.model_dump(mode="json"))


@router.post("/segments/{segment_id}/repair")
def repair_segment_marker(
    segment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    provider: Annotated[DocumentProviderBase, Depends(get_document_provider)],
) -> dict:
    """Re-create an orphaned segment's named range where its text now is.

    Errors:
        E_SEGMENT_NOT_FOUND (404): Segment missing or not owned.
        E_MARKER_TEXT_NOT_FOUND (400): The text is no longer in the document.
    """
    result = sync_service.repair_marker(db, provider, viewer.user_id, segment_id)
    return success_response(result.model_dump(mode="json"))
