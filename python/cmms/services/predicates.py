"""Composable WHERE-clause builder for segment queries.

A SegmentPredicate is an ordered list of named FilterClauses over the
segments table aliased as ``s``. Each clause owns its SQL fragment and its
bind parameters, so clauses can be dropped by name without renumbering
anything. Search builds one predicate and reuses it for the listing, the
total count and both facets (each facet drops its own dimension).

Parameter names must be unique across clauses; each clause prefixes its
parameters with its own name.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

# Clause names (facet dimensions are excluded by these names)
OWNER = "owner"
QUERY = "query"
CATEGORY = "category"
TAG = "tag"
DOCUMENT = "document"
PRIMARY = "primary"
CREATED_FROM = "created_from"
CREATED_TO = "created_to"
TITLE_OR_TEXT = "title_or_text"


@dataclass(frozen=True)
class FilterClause:
    """One named, self-contained predicate fragment."""

    name: str
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SegmentPredicate:
    """Immutable AND-composition of FilterClauses."""

    clauses: tuple[FilterClause, ...] = ()

    def add(self, name: str, sql: str, **params: Any) -> "SegmentPredicate":
        """Return a new predicate with one more clause."""
        return SegmentPredicate(self.clauses + (FilterClause(name, sql, params),))

    def without(self, *names: str) -> "SegmentPredicate":
        """Return a new predicate with every clause of the given names removed."""
        return SegmentPredicate(tuple(c for c in self.clauses if c.name not in names))

    def has(self, name: str) -> bool:
        return any(c.name == name for c in self.clauses)

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.clauses]

    @property
    def sql(self) -> str:
        """The WHERE body; ``TRUE`` when there are no clauses."""
        if not self.clauses:
            return "TRUE"
        return " AND ".join(f"({c.sql})" for c in self.clauses)

    @property
    def params(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for clause in self.clauses:
            overlap = merged.keys() & clause.params.keys()
            if overlap:
                raise ValueError(f"duplicate bind parameters: {sorted(overlap)}")
            merged.update(clause.params)
        return merged


def _unique(ids: list[UUID] | None) -> list[UUID]:
    return list(dict.fromkeys(ids or []))


def owner_predicate(user_id: UUID) -> SegmentPredicate:
    """Base predicate every segment query starts from."""
    return SegmentPredicate().add(OWNER, "s.user_id = :owner_user_id", owner_user_id=user_id)


def with_query(pred: SegmentPredicate, query: str | None) -> SegmentPredicate:
    """Full-text match; blank queries add nothing."""
    if not query or not query.strip():
        return pred
    return pred.add(
        QUERY,
        "s.search_vector @@ websearch_to_tsquery('english', :query_text)",
        query_text=query.strip(),
    )


def with_text_or_title(pred: SegmentPredicate, search: str | None) -> SegmentPredicate:
    """Full-text match OR case-insensitive title substring (segment listing)."""
    if not search or not search.strip():
        return pred
    term = search.strip()
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return pred.add(
        TITLE_OR_TEXT,
        "s.search_vector @@ websearch_to_tsquery('english', :title_or_text_query)"
        " OR s.title ILIKE :title_or_text_like",
        title_or_text_query=term,
        title_or_text_like=f"%{escaped}%",
    )


def with_categories(pred: SegmentPredicate, category_ids: list[UUID] | None) -> SegmentPredicate:
    ids = _unique(category_ids)
    if not ids:
        return pred
    return pred.add(CATEGORY, "s.category_id = ANY(:category_ids)", category_ids=ids)


def with_documents(pred: SegmentPredicate, document_ids: list[UUID] | None) -> SegmentPredicate:
    ids = _unique(document_ids)
    if not ids:
        return pred
    return pred.add(DOCUMENT, "s.document_id = ANY(:document_ids)", document_ids=ids)


def with_tags(
    pred: SegmentPredicate, tag_ids: list[UUID] | None, logic: str = "AND"
) -> SegmentPredicate:
    """Tag filter. OR: at least one tag. AND: every requested tag."""
    ids = _unique(tag_ids)
    if not ids:
        return pred
    if logic.upper() == "OR":
        return pred.add(
            TAG,
            "EXISTS (SELECT 1 FROM segment_tags st"
            " WHERE st.segment_id = s.id AND st.tag_id = ANY(:tag_ids))",
            tag_ids=ids,
        )
    return pred.add(
        TAG,
        "(SELECT COUNT(DISTINCT st.tag_id) FROM segment_tags st"
        " WHERE st.segment_id = s.id AND st.tag_id = ANY(:tag_ids)) = :tag_count",
        tag_ids=ids,
        tag_count=len(ids),
    )


def with_primary(pred: SegmentPredicate, is_primary: bool | None) -> SegmentPredicate:
    if is_primary is None:
        return pred
    return pred.add(PRIMARY, "s.is_primary = :primary_flag", primary_flag=is_primary)


def with_created_range(
    pred: SegmentPredicate, start: datetime | None, end: datetime | None
) -> SegmentPredicate:
    """Inclusive creation-time bounds."""
    if start is not None:
        pred = pred.add(CREATED_FROM, "s.created_at >= :created_from", created_from=start)
    if end is not None:
        pred = pred.add(CREATED_TO, "s.created_at <= :created_to", created_to=end)
    return pred
