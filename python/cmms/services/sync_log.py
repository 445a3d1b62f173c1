"""Append-only sync audit log."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from cmms.db.models import SyncAction, SyncLog, SyncStatus


def write_sync_log(
    db: Session,
    user_id: UUID,
    action: SyncAction,
    status: SyncStatus,
    details: dict[str, Any] | None = None,
    document_id: UUID | None = None,
) -> SyncLog:
    """Add a sync_log row to the session. Does not commit."""
    entry = SyncLog(
        user_id=user_id,
        document_id=document_id,
        action=action.value,
        status=status.value,
        details=details,
    )
    db.add(entry)
    return entry
