"""FastAPI dependencies for route handlers.

Common dependencies like database sessions and the per-user Google client.
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from cmms.auth.middleware import Viewer, get_viewer
from cmms.db.session import get_db, get_session_factory
from cmms.google.client import DocumentProviderBase
from cmms.services.credentials import build_document_provider

__all__ = ["get_db", "get_document_provider", "get_session_factory"]


def get_document_provider(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> DocumentProviderBase:
    """Google client acting with the viewer's own credentials.

    Tests replace this dependency with a FakeDocumentProvider via
    app.dependency_overrides.
    """
    return build_document_provider(db, viewer.user_id)
