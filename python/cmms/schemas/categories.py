"""Category schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CategoryOut(BaseModel):
    id: UUID
    name: str
    description: str | None = None
    icon: str | None = None
    sort_order: int
    is_default: bool
    segment_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateCategoryRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    icon: str | None = Field(None, max_length=50)


class UpdateCategoryRequest(BaseModel):
    """All fields optional; omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    icon: str | None = Field(None, max_length=50)


class ReorderCategoriesRequest(BaseModel):
    """Full ordering of the user's categories, first to last."""

    category_ids: list[UUID] = Field(..., min_length=1)
