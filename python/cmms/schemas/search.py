"""Search request and response schemas."""

from datetime import UTC, date, datetime, time, timedelta
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from cmms.schemas.segments import SegmentOut


class DateRange(BaseModel):
    """Inclusive creation-date bounds; either end may be open.

    A bare date covers that whole UTC day: as start it means midnight, as
    end the last microsecond of the day. Naive timestamps are read as UTC.
    """

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _expand_dates(cls, value: Any, info: ValidationInfo) -> Any:
        day = _as_date(value)
        if day is None:
            return value
        midnight = datetime.combine(day, time.min, tzinfo=UTC)
        if info.field_name == "end":
            return midnight + timedelta(days=1) - timedelta(microseconds=1)
        return midnight

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


def _as_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return None
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) == 10:
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None
    return None


class SearchFilters(BaseModel):
    category_ids: list[UUID] = []
    tag_ids: list[UUID] = []
    tag_logic: Literal["AND", "OR"] = "AND"
    document_ids: list[UUID] = []
    is_primary: bool | None = None
    date_range: DateRange | None = None


class SearchRequest(BaseModel):
    """Body of POST /search. An empty query means "browse, filtered only"."""

    query: str = Field("", max_length=1000)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)
    sort: Literal["relevance", "created_at", "updated_at"] = "relevance"
    order: Literal["asc", "desc"] = "desc"


class SearchResultOut(SegmentOut):
    highlight: str
    rank: float


class FacetBucket(BaseModel):
    id: UUID
    name: str
    count: int


class SearchFacets(BaseModel):
    categories: list[FacetBucket] = []
    tags: list[FacetBucket] = []


class SearchResponse(BaseModel):
    results: list[SearchResultOut]
    total: int
    facets: SearchFacets
