"""Tag schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class TagOut(BaseModel):
    id: UUID
    name: str
    tag_type: str | None = None
    usage_count: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TagBrief(BaseModel):
    """Tag as embedded in segment and search results."""

    id: UUID
    name: str
    tag_type: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CreateTagRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    tag_type: str | None = Field(None, max_length=50)


class BulkCreateTagsRequest(BaseModel):
    """Create-or-get many tags by name; all new tags share tag_type."""

    names: list[str] = Field(..., min_length=1, max_length=100)
    tag_type: str | None = Field(None, max_length=50)


class UpdateTagRequest(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    tag_type: str | None = Field(None, max_length=50)
