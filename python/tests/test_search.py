"""Integration tests for POST /api/v1/search.

Tests cover:
- Full-text matching with ranked, highlighted results
- Browse mode (empty query)
- Category, tag (AND/OR), document, primary and date filters
- Facet counts that ignore their own dimension
- Pagination and per-user isolation
"""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError
from sqlalchemy.orm import Session

from cmms.schemas.search import DateRange
from cmms.services.search import hash_query
from tests.factories import (
    create_test_document,
    create_test_segment,
    create_test_tag,
    create_test_user,
    get_category_id,
)
from tests.helpers import auth_headers


@pytest.fixture
def headers(user_id):
    return auth_headers(user_id)


@pytest.fixture
def corpus(db_session: Session, user_id):
    """Four segments over two documents, two categories and two tags."""
    bit = get_category_id(db_session, user_id, "Bit")
    premise = get_category_id(db_session, user_id, "Premise")
    travel = create_test_tag(db_session, user_id, name="travel")
    food = create_test_tag(db_session, user_id, name="food")
    notebook = create_test_document(db_session, user_id, title="Notebook")
    set_list = create_test_document(db_session, user_id, title="Set List")

    segments = {
        "airport": create_test_segment(
            db_session, user_id, notebook, bit,
            text_content="airport security takes my shoes", tag_ids=[travel],
        ),
        "airplane_food": create_test_segment(
            db_session, user_id, notebook, bit, start_offset=50,
            text_content="airplane food is a dare", tag_ids=[travel, food],
        ),
        "diner": create_test_segment(
            db_session, user_id, set_list, premise,
            text_content="the diner waitress knows my order", tag_ids=[food],
        ),
        "gas": create_test_segment(
            db_session, user_id, set_list, premise, start_offset=60,
            text_content="gas station hands", is_primary=False,
        ),
    }
    return {
        "bit": bit,
        "premise": premise,
        "travel": travel,
        "food": food,
        "notebook": notebook,
        "set_list": set_list,
        "segments": segments,
    }


def _search(client: TestClient, headers: dict, **body) -> dict:
    response = client.post("/api/v1/search", json=body, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]


def _ids(data: dict) -> set[str]:
    return {r["id"] for r in data["results"]}


def _facet(buckets: list[dict]) -> dict[str, int]:
    return {b["name"]: b["count"] for b in buckets}


class TestQuery:
    def test_query_matches_and_highlights(self, auth_client: TestClient, headers, corpus):
        data = _search(auth_client, headers, query="airport")

        assert _ids(data) == {str(corpus["segments"]["airport"])}
        assert data["total"] == 1
        result = data["results"][0]
        assert "<b>airport</b>" in result["highlight"].lower()
        assert result["rank"] > 0
        assert result["category"]["name"] == "Bit"
        assert [t["name"] for t in result["tags"]] == ["travel"]

    def test_stemmed_query(self, auth_client: TestClient, headers, corpus):
        data = _search(auth_client, headers, query="airports")

        assert _ids(data) == {str(corpus["segments"]["airport"])}

    def test_no_match(self, auth_client: TestClient, headers, corpus):
        data = _search(auth_client, headers, query="giraffe")

        assert data["results"] == []
        assert data["total"] == 0
        assert data["facets"] == {"categories": [], "tags": []}

    def test_other_users_never_match(self, auth_client: TestClient, db_session, corpus):
        stranger = create_test_user(db_session)

        data = _search(auth_client, auth_headers(stranger), query="airport")

        assert data["total"] == 0


class TestBrowse:
    def test_empty_query_browses_everything(self, auth_client: TestClient, headers, corpus):
        data = _search(auth_client, headers)

        assert data["total"] == 4
        assert all(r["rank"] == 0 for r in data["results"])
        by_id = {r["id"]: r for r in data["results"]}
        assert by_id[str(corpus["segments"]["gas"])]["highlight"] == "gas station hands"

    def test_browse_highlight_is_truncated(
        self, auth_client: TestClient, db_session: Session, user_id, headers
    ):
        document_id = create_test_document(db_session, user_id)
        create_test_segment(
            db_session, user_id, document_id, get_category_id(db_session, user_id, "Bit"),
            text_content="word " * 60,
        )

        data = _search(auth_client, headers, query="   ")

        assert len(data["results"][0]["highlight"]) == 100

    def test_pagination(self, auth_client: TestClient, headers, corpus):
        first = _search(auth_client, headers, limit=3)
        second = _search(auth_client, headers, limit=3, offset=3)

        assert first["total"] == second["total"] == 4
        assert len(first["results"]) == 3
        assert len(second["results"]) == 1
        assert _ids(first).isdisjoint(_ids(second))


class TestFilters:
    def test_category_filter(self, auth_client: TestClient, headers, corpus):
        data = _search(auth_client, headers, filters={"category_ids": [str(corpus["premise"])]})

        segments = corpus["segments"]
        assert _ids(data) == {str(segments["diner"]), str(segments["gas"])}

    def test_tag_logic(self, auth_client: TestClient, headers, corpus):
        tags = [str(corpus["travel"]), str(corpus["food"])]
        segments = corpus["segments"]

        both = _search(auth_client, headers, filters={"tag_ids": tags, "tag_logic": "AND"})
        either = _search(auth_client, headers, filters={"tag_ids": tags, "tag_logic": "OR"})

        assert _ids(both) == {str(segments["airplane_food"])}
        assert _ids(either) == {
            str(segments["airport"]),
            str(segments["airplane_food"]),
            str(segments["diner"]),
        }

    def test_document_and_primary_filters(self, auth_client: TestClient, headers, corpus):
        segments = corpus["segments"]

        in_set_list = _search(
            auth_client, headers, filters={"document_ids": [str(corpus["set_list"])]}
        )
        secondary = _search(auth_client, headers, filters={"is_primary": False})

        assert _ids(in_set_list) == {str(segments["diner"]), str(segments["gas"])}
        assert _ids(secondary) == {str(segments["gas"])}

    def test_date_range(self, auth_client: TestClient, headers, corpus):
        now = datetime.now(UTC)
        past = {"end": (now - timedelta(days=30)).isoformat()}
        recent = {"start": (now - timedelta(days=1)).isoformat()}

        assert _search(auth_client, headers, filters={"date_range": past})["total"] == 0
        assert _search(auth_client, headers, filters={"date_range": recent})["total"] == 4

    def test_date_only_bounds_cover_the_whole_day(
        self, auth_client: TestClient, headers, corpus
    ):
        today = datetime.now(UTC).date().isoformat()
        yesterday = (datetime.now(UTC).date() - timedelta(days=1)).isoformat()

        same_day = {"start": today, "end": today}
        before = {"end": yesterday}

        assert _search(auth_client, headers, filters={"date_range": same_day})["total"] == 4
        assert _search(auth_client, headers, filters={"date_range": before})["total"] == 0

    def test_query_combines_with_filters(self, auth_client: TestClient, headers, corpus):
        data = _search(
            auth_client,
            headers,
            query="food",
            filters={"category_ids": [str(corpus["premise"])]},
        )

        assert data["total"] == 0


class TestFacets:
    def test_facets_without_filters(self, auth_client: TestClient, headers, corpus):
        facets = _search(auth_client, headers)["facets"]

        assert _facet(facets["categories"]) == {"Bit": 2, "Premise": 2}
        assert _facet(facets["tags"]) == {"travel": 2, "food": 2}

    def test_category_facet_ignores_category_filter(
        self, auth_client: TestClient, headers, corpus
    ):
        data = _search(auth_client, headers, filters={"category_ids": [str(corpus["bit"])]})

        assert data["total"] == 2
        assert _facet(data["facets"]["categories"]) == {"Bit": 2, "Premise": 2}
        assert _facet(data["facets"]["tags"]) == {"travel": 2, "food": 1}

    def test_tag_facet_ignores_tag_filter(self, auth_client: TestClient, headers, corpus):
        data = _search(auth_client, headers, filters={"tag_ids": [str(corpus["travel"])]})

        assert data["total"] == 2
        assert _facet(data["facets"]["tags"]) == {"travel": 2, "food": 2}
        assert _facet(data["facets"]["categories"]) == {"Bit": 2}


class TestValidation:
    def test_bad_tag_logic(self, auth_client: TestClient, headers):
        response = auth_client.post(
            "/api/v1/search", json={"filters": {"tag_logic": "XOR"}}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "E_INVALID_REQUEST"

    def test_limit_bounds(self, auth_client: TestClient, headers):
        response = auth_client.post("/api/v1/search", json={"limit": 500}, headers=headers)

        assert response.status_code == 400


def test_date_range_expands_bare_dates_to_whole_utc_days():
    bounds = DateRange(start="2026-01-31", end="2026-01-31")

    assert bounds.start == datetime(2026, 1, 31, tzinfo=UTC)
    assert bounds.end == datetime(2026, 1, 31, 23, 59, 59, 999999, tzinfo=UTC)


def test_date_range_reads_naive_timestamps_as_utc():
    bounds = DateRange(end="2026-01-31T12:00:00")

    assert bounds.start is None
    assert bounds.end == datetime(2026, 1, 31, 12, tzinfo=UTC)


def test_date_range_keeps_explicit_offsets():
    bounds = DateRange(start="2026-01-31T12:00:00+02:00")

    assert bounds.start == datetime(2026, 1, 31, 10, tzinfo=UTC)


def test_date_range_rejects_garbage():
    with pytest.raises(ValidationError):
        DateRange(end="2026-13-45")


def test_hash_query_normalizes():
    assert hash_query("  Airport ") == hash_query("airport")
    assert hash_query("airport") != hash_query("airports")
    assert len(hash_query("airport")) == 16
