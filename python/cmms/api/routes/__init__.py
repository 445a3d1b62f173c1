"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from cmms.api.routes.auth import router as auth_router
from cmms.api.routes.categories import router as categories_router
from cmms.api.routes.documents import router as documents_router
from cmms.api.routes.health import router as health_router
from cmms.api.routes.preferences import router as preferences_router
from cmms.api.routes.search import router as search_router
from cmms.api.routes.segments import router as segments_router
from cmms.api.routes.sync import router as sync_router
from cmms.api.routes.tags import router as tags_router

API_PREFIX = "/api/v1"


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    /health is served at the root; everything else lives under /api/v1.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])

    v1 = APIRouter(prefix=API_PREFIX)
    v1.include_router(auth_router)
    v1.include_router(preferences_router)
    v1.include_router(documents_router)
    v1.include_router(segments_router)
    v1.include_router(categories_router)
    v1.include_router(tags_router)
    v1.include_router(search_router)
    v1.include_router(sync_router)
    api_router.include_router(v1)

    return api_router


__all__ = ["API_PREFIX", "create_api_router"]
