"""Segment and association schemas.

Offsets are half-open [start_offset, end_offset) in Unicode code points
over the document's extracted plain text.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from cmms.schemas.tags import TagBrief

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"

ASSOCIATION_TYPES = Literal["derivative", "callback", "reference", "version"]

# Sort keys accepted by GET /segments
SEGMENT_SORT_KEYS = Literal["created_at", "updated_at", "title", "word_count"]


# =============================================================================
# Output Schemas
# =============================================================================


class CategoryBrief(BaseModel):
    id: UUID
    name: str
    icon: str | None = None

    model_config = ConfigDict(from_attributes=True)


class DocumentBrief(BaseModel):
    id: UUID
    title: str
    google_file_id: str

    model_config = ConfigDict(from_attributes=True)


class SegmentOut(BaseModel):
    """A segment with its denormalized display fields."""

    id: UUID
    document_id: UUID
    category_id: UUID
    start_offset: int
    end_offset: int
    text_content: str
    title: str | None = None
    color: str
    is_primary: bool
    word_count: int | None = None
    created_at: datetime
    updated_at: datetime
    category: CategoryBrief | None = None
    document: DocumentBrief | None = None
    tags: list[TagBrief] = []
    associations_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class RelatedSegmentOut(BaseModel):
    id: UUID
    title: str | None = None
    text_content: str
    color: str
    document_id: UUID


class AssociationOut(BaseModel):
    """An association seen from one segment.

    direction is "outgoing" when the segment is the source, "incoming"
    when it is the target.
    """

    id: UUID
    association_type: str
    created_at: datetime
    direction: Literal["outgoing", "incoming"]
    related_segment_id: UUID
    related_segment: RelatedSegmentOut


class AssociateOut(BaseModel):
    """Result of creating an association: the new target segment and the edge."""

    segment: SegmentOut
    association_id: UUID
    association_type: str


# =============================================================================
# Request Schemas
# =============================================================================


class CreateSegmentRequest(BaseModel):
    """Capture a new segment. Color is assigned when omitted."""

    document_id: UUID
    category_id: UUID
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., gt=0)
    text_content: str = Field(..., min_length=1)
    title: str | None = Field(None, max_length=255)
    tag_ids: list[UUID] = []
    color: str | None = Field(None, pattern=HEX_COLOR)


class UpdateSegmentRequest(BaseModel):
    """All fields optional; omitted fields are left unchanged."""

    title: str | None = Field(None, max_length=255)
    category_id: UUID | None = None
    color: str | None = Field(None, pattern=HEX_COLOR)
    is_primary: bool | None = None


class UpdateMarkersRequest(BaseModel):
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., gt=0)


class SegmentTagsRequest(BaseModel):
    tag_ids: list[UUID] = Field(default_factory=list, max_length=200)


class AssociateRequest(BaseModel):
    """Mark a span in another document as related to this segment."""

    target_document_id: UUID
    start_offset: int = Field(..., ge=0)
    end_offset: int = Field(..., gt=0)
    text_content: str = Field(..., min_length=1)
    association_type: ASSOCIATION_TYPES
