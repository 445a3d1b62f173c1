"""Database module for CMMS.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from cmms.db.engine import create_db_engine, get_engine
from cmms.db.models import (
    DEFAULT_PALETTE,
    AssociationType,
    Base,
    Category,
    ColorUsage,
    Document,
    Segment,
    SegmentAssociation,
    SegmentTag,
    SyncAction,
    SyncLog,
    SyncStatus,
    Tag,
    Theme,
    User,
    UserPreferences,
)
from cmms.db.session import get_db, session_scope, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "session_scope",
    "transaction",
    # Base
    "Base",
    "DEFAULT_PALETTE",
    # Enums
    "AssociationType",
    "SyncAction",
    "SyncStatus",
    "Theme",
    # Models
    "User",
    "UserPreferences",
    "Category",
    "Tag",
    "Document",
    "Segment",
    "SegmentTag",
    "SegmentAssociation",
    "ColorUsage",
    "SyncLog",
]
