"""Document schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentOut(BaseModel):
    id: UUID
    google_file_id: str
    title: str
    google_folder_id: str | None = None
    mime_type: str | None = None
    is_active: bool
    last_synced_at: datetime | None = None
    last_modified_at: datetime | None = None
    segment_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DocumentSegmentOut(BaseModel):
    """Segment summary embedded in a document detail response."""

    id: UUID
    category_id: UUID
    start_offset: int
    end_offset: int
    text_content: str
    title: str | None = None
    color: str
    is_primary: bool
    word_count: int | None = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DocumentDetailOut(DocumentOut):
    segments: list[DocumentSegmentOut] = []


class RegisterDocumentRequest(BaseModel):
    google_file_id: str = Field(..., min_length=1, max_length=255)
    copy_to_folder: bool = False


class DocumentFromSelectionRequest(BaseModel):
    """Create a new Google Doc in the watch folder from selected text."""

    source_google_file_id: str = Field(..., min_length=1, max_length=255)
    selected_text: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=255)
