"""Search and facet service.

One SegmentPredicate drives four queries: the result page, the total
count, the category facet (without the category filter) and the tag facet
(without the tag filter). Facet counts therefore show how many results
each option would produce if selected, given every other active filter.

Search is read-only. Queries are logged as a hash only.
"""

import hashlib
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from cmms.logging import get_logger
from cmms.schemas.search import (
    FacetBucket,
    SearchFacets,
    SearchRequest,
    SearchResponse,
    SearchResultOut,
)
from cmms.services import predicates
from cmms.services.predicates import SegmentPredicate
from cmms.services.segments import hydrate_segments

logger = get_logger(__name__)

FACET_LIMIT = 20
HEADLINE_OPTIONS = "MaxWords=35, MinWords=15, MaxFragments=3"
SNIPPET_LENGTH = 100


def hash_query(query: str) -> str:
    """Hash a query for logging; case and surrounding whitespace are ignored."""
    return hashlib.sha256(query.strip().lower().encode("utf-8")).hexdigest()[:16]


def build_search_predicate(user_id: UUID, req: SearchRequest) -> SegmentPredicate:
    """Every active filter of a search request as one predicate."""
    filters = req.filters
    pred = predicates.owner_predicate(user_id)
    pred = predicates.with_query(pred, req.query)
    pred = predicates.with_categories(pred, filters.category_ids)
    pred = predicates.with_tags(pred, filters.tag_ids, filters.tag_logic)
    pred = predicates.with_documents(pred, filters.document_ids)
    pred = predicates.with_primary(pred, filters.is_primary)
    if filters.date_range is not None:
        pred = predicates.with_created_range(
            pred, filters.date_range.start, filters.date_range.end
        )
    return pred


def _order_by(req: SearchRequest, has_query: bool) -> str:
    direction = "ASC" if req.order == "asc" else "DESC"
    if req.sort == "relevance" and has_query:
        return "rank DESC, s.created_at DESC, s.id DESC"
    column = "s.updated_at" if req.sort == "updated_at" else "s.created_at"
    return f"{column} {direction}, s.id {direction}"


def _category_facet(db: Session, pred: SegmentPredicate) -> list[FacetBucket]:
    rows = db.execute(
        text(f"""
            SELECT c.id, c.name, COUNT(*) AS count
            FROM segments s
            JOIN categories c ON c.id = s.category_id
            WHERE {pred.sql}
            GROUP BY c.id, c.name
            ORDER BY count DESC, c.name ASC
            LIMIT :facet_limit
        """),
        {**pred.params, "facet_limit": FACET_LIMIT},
    ).all()
    return [FacetBucket(id=row.id, name=row.name, count=row.count) for row in rows]


def _tag_facet(db: Session, pred: SegmentPredicate) -> list[FacetBucket]:
    rows = db.execute(
        text(f"""
            SELECT t.id, t.name, COUNT(*) AS count
            FROM segments s
            JOIN segment_tags st ON st.segment_id = s.id
            JOIN tags t ON t.id = st.tag_id
            WHERE {pred.sql}
            GROUP BY t.id, t.name
            ORDER BY count DESC, t.name ASC
            LIMIT :facet_limit
        """),
        {**pred.params, "facet_limit": FACET_LIMIT},
    ).all()
    return [FacetBucket(id=row.id, name=row.name, count=row.count) for row in rows]


def search_segments(db: Session, user_id: UUID, req: SearchRequest) -> SearchResponse:
    """Full-text search with filters, pagination and facets.

    Without a query this is a filtered browse: rank is 0, the highlight is
    the first characters of the text and relevance sorting falls back to
    created_at.
    """
    query = req.query.strip()
    has_query = bool(query)
    pred = build_search_predicate(user_id, req)
    params = pred.params

    if has_query:
        select_extra = f"""
            ts_rank(s.search_vector, websearch_to_tsquery('english', :query_text)) AS rank,
            ts_headline('english', s.text_content,
                        websearch_to_tsquery('english', :query_text),
                        '{HEADLINE_OPTIONS}') AS highlight
        """
    else:
        select_extra = f"0.0 AS rank, LEFT(s.text_content, {SNIPPET_LENGTH}) AS highlight"

    rows = db.execute(
        text(f"""
            SELECT s.id, {select_extra}
            FROM segments s
            WHERE {pred.sql}
            ORDER BY {_order_by(req, has_query)}
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": req.limit, "offset": req.offset},
    ).all()

    total = db.execute(
        text(f"SELECT COUNT(*) FROM segments s WHERE {pred.sql}"), params
    ).scalar_one()

    hydrated = {s.id: s for s in hydrate_segments(db, user_id, [row.id for row in rows])}
    results = [
        SearchResultOut(
            **hydrated[row.id].model_dump(),
            highlight=row.highlight or "",
            rank=float(row.rank or 0.0),
        )
        for row in rows
        if row.id in hydrated
    ]

    facets = SearchFacets(
        categories=_category_facet(db, pred.without(predicates.CATEGORY)),
        tags=_tag_facet(db, pred.without(predicates.TAG)),
    )

    logger.info(
        "search_executed",
        query_hash=hash_query(query) if has_query else None,
        filters=pred.names,
        total=total,
        returned=len(results),
    )
    return SearchResponse(results=results, total=total, facets=facets)
