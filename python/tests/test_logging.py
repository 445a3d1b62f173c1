"""Tests for structured logging context.

Covers:
- Request and task context injection into event dicts
- Context clearing between requests and tasks
- Search logs carrying a query hash, never the query text
"""

from uuid import uuid4

import pytest
import structlog

from cmms.logging import (
    add_request_context,
    clear_request_context,
    clear_task_context,
    configure_task_logging,
    get_request_id,
    set_request_context,
    set_user_context,
)
from cmms.schemas.search import SearchRequest
from cmms.services import search as search_service
from cmms.services.search import build_search_predicate, hash_query


class TestRequestContext:
    def setup_method(self):
        clear_request_context()

    def teardown_method(self):
        clear_request_context()

    def test_request_fields_injected(self):
        set_request_context("req-1", path="/api/v1/sync/full", method="POST")
        set_user_context("user-9")

        event = add_request_context(None, "info", {"event": "x"})

        assert event == {
            "event": "x",
            "request_id": "req-1",
            "user_id": "user-9",
            "path": "/api/v1/sync/full",
            "method": "POST",
        }
        assert get_request_id() == "req-1"

    def test_empty_context_adds_nothing(self):
        assert add_request_context(None, "info", {"event": "x"}) == {"event": "x"}

    def test_clear_removes_everything(self):
        set_request_context("req-1", user_id="u", path="/p", method="GET")
        clear_request_context()

        assert add_request_context(None, "info", {}) == {}
        assert get_request_id() is None


class TestTaskContext:
    def teardown_method(self):
        clear_task_context()

    def test_task_fields_injected(self):
        configure_task_logging(
            request_id="req-7", task_name="sync_watch_folder", task_id="t-1", user_id="u-1"
        )

        event = add_request_context(None, "info", {})

        assert event["task_name"] == "sync_watch_folder"
        assert event["task_id"] == "t-1"
        assert event["request_id"] == "req-7"
        assert event["user_id"] == "u-1"

    def test_clear_task_context(self):
        configure_task_logging(request_id="req-7", task_name="n", task_id="t", user_id="u")
        clear_task_context()

        assert add_request_context(None, "info", {}) == {}


@pytest.fixture
def log_sink(monkeypatch: pytest.MonkeyPatch):
    """Capture emitted event dicts from the search service into a list."""
    events: list[dict] = []
    original_config = structlog.get_config()

    def capture_processor(logger, method_name, event_dict):
        events.append(event_dict.copy())
        raise structlog.DropEvent

    structlog.configure(
        processors=[capture_processor],
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    # The module logger may already be bound to the previous configuration
    monkeypatch.setattr(search_service, "logger", structlog.get_logger(search_service.__name__))

    yield events

    structlog.configure(**original_config)


class TestSearchLogging:
    def test_search_event_has_hash_not_query(self, db_session, user_id, log_sink):
        search_service.search_segments(
            db_session, user_id, SearchRequest(query="secret airport bit")
        )

        events = [e for e in log_sink if e["event"] == "search_executed"]
        assert len(events) == 1
        assert events[0]["query_hash"] == hash_query("secret airport bit")
        assert "secret airport bit" not in str(events[0])

    def test_filter_names_are_logged(self):
        pred = build_search_predicate(uuid4(), SearchRequest(query="x"))
        assert pred.names == ["owner", "query"]
