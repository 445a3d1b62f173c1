"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and Celery tasks and orchestrate
database and Google operations.
"""

from cmms.services.bootstrap import ensure_user_defaults
from cmms.services.reconcile import sync_document
from cmms.services.search import search_segments
from cmms.services.sync import sync_all_documents

__all__ = [
    "ensure_user_defaults",
    "search_segments",
    "sync_all_documents",
    "sync_document",
]
