"""Sync result schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class SyncConflict(BaseModel):
    """A problem needing manual attention.

    segment_id is "all" for document-level conflicts.
    """

    segment_id: str
    type: Literal["marker_missing", "document_access_lost"]
    details: str


class OrphanedSegment(BaseModel):
    id: UUID
    title: str | None = None
    last_text: str


class SyncResult(BaseModel):
    """Outcome of reconciling one document."""

    document_id: UUID
    status: Literal["success", "failed"]
    updated_segments: int = 0
    repositioned_segments: int = 0
    orphaned_segments: list[OrphanedSegment] = []
    conflicts: list[SyncConflict] = []


class FullSyncError(BaseModel):
    document_id: UUID | None = None
    google_file_id: str
    error: str


class FullSyncResult(BaseModel):
    """Aggregate outcome of a watch-folder sync."""

    documents_synced: int = 0
    documents_added: int = 0
    documents_removed: int = 0
    segments_updated: int = 0
    errors: list[FullSyncError] = []


class DocumentSyncStamp(BaseModel):
    document_id: UUID | None = None
    timestamp: datetime


class WatchedFolder(BaseModel):
    id: str


class SyncStatusOut(BaseModel):
    last_full_sync: datetime | None = None
    last_document_sync: DocumentSyncStamp | None = None
    pending_changes: int = 0
    sync_in_progress: bool = False
    watched_folder: WatchedFolder | None = None


class MarkerRepairResult(BaseModel):
    """Outcome of re-anchoring an orphaned segment."""

    segment_id: UUID
    document_id: UUID
    start_offset: int
    end_offset: int
    range_name: str


class BackgroundSyncOut(BaseModel):
    task_id: str
