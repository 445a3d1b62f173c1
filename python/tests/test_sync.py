"""Integration tests for reconciliation, marker repair and watch-folder sync.

Google is replaced by a FakeDocumentProvider whose offsets are plain-text
offsets. Each test seeds the provider and the database so that a
segment's named range either matches, moved, changed or vanished.
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.orm import Session

from cmms.db.models import SyncStatus
from cmms.google.client import FakeDocumentProvider, segment_range_name
from cmms.services import reconcile
from cmms.services.reconcile import sync_document
from cmms.services.sync import acquire_sync_lease, is_sync_in_progress, release_sync_lease
from tests.factories import (
    create_test_document,
    create_test_segment,
    create_test_user,
    get_category_id,
)
from tests.helpers import auth_headers

WATCH_FOLDER = "folder-watch"
DOC_TEXT = "xxxx gas station hands yyyy"


@pytest.fixture
def headers(user_id):
    return auth_headers(user_id)


@pytest.fixture
def tracked(db_session: Session, fake_provider: FakeDocumentProvider, user_id):
    """One registered doc holding one segment whose range matches the stored text."""
    fake_provider.add_document("gdoc-1", "Notebook", DOC_TEXT, folder_id=WATCH_FOLDER)
    document_id = create_test_document(
        db_session, user_id, google_file_id="gdoc-1", title="Old Title"
    )
    segment_id = create_test_segment(
        db_session,
        user_id,
        document_id,
        get_category_id(db_session, user_id, "Bit"),
        start_offset=5,
        title="Gas",
    )
    fake_provider.set_range("gdoc-1", segment_id, 5, 22)
    return {"document_id": document_id, "segment_id": segment_id}


def _segment(db: Session, segment_id):
    return db.execute(
        text("SELECT * FROM segments WHERE id = :id"), {"id": segment_id}
    ).mappings().one()


def _document(db: Session, document_id):
    return db.execute(
        text("SELECT * FROM documents WHERE id = :id"), {"id": document_id}
    ).mappings().one()


def _failed_syncs(db: Session, document_id) -> int:
    return db.execute(
        text("SELECT COUNT(*) FROM sync_log WHERE document_id = :id AND status = 'failed'"),
        {"id": document_id},
    ).scalar_one()


def _hold_lease(db: Session, user_id) -> None:
    db.execute(
        text("UPDATE users SET sync_lease_acquired_at = clock_timestamp() WHERE id = :id"),
        {"id": user_id},
    )
    db.commit()


def _sync(client: TestClient, headers: dict, document_id) -> dict:
    response = client.post(f"/api/v1/sync/document/{document_id}", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]


class TestSyncDocument:
    def test_unchanged_document_is_a_no_op(
        self, auth_client: TestClient, db_session: Session, headers, tracked
    ):
        first = _sync(auth_client, headers, tracked["document_id"])
        second = _sync(auth_client, headers, tracked["document_id"])

        for result in (first, second):
            assert result["status"] == "success"
            assert result["updated_segments"] == 0
            assert result["repositioned_segments"] == 0
            assert result["orphaned_segments"] == []
            assert result["conflicts"] == []
        document = _document(db_session, tracked["document_id"])
        assert document["last_synced_at"] is not None
        assert document["title"] == "Notebook"

    def test_edited_text_is_pulled_in(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        headers,
        tracked,
    ):
        fake_provider.set_text("gdoc-1", "xxxx gas station palms yyyy")

        result = _sync(auth_client, headers, tracked["document_id"])

        assert result["updated_segments"] == 1
        segment = _segment(db_session, tracked["segment_id"])
        assert segment["text_content"] == "gas station palms"
        assert segment["title"] == "Gas"

    def test_moved_range_repositions_segment(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        headers,
        tracked,
    ):
        fake_provider.set_text("gdoc-1", "INTRO " + DOC_TEXT)
        fake_provider.set_range("gdoc-1", tracked["segment_id"], 11, 28)

        result = _sync(auth_client, headers, tracked["document_id"])

        assert result["updated_segments"] == 0
        assert result["repositioned_segments"] == 1
        segment = _segment(db_session, tracked["segment_id"])
        assert (segment["start_offset"], segment["end_offset"]) == (11, 28)
        assert segment["text_content"] == "gas station hands"

    def test_missing_range_reports_orphan(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        headers,
        tracked,
    ):
        fake_provider.remove_range("gdoc-1", tracked["segment_id"])

        result = _sync(auth_client, headers, tracked["document_id"])

        assert result["status"] == "success"
        assert result["orphaned_segments"] == [
            {"id": str(tracked["segment_id"]), "title": "Gas", "last_text": "gas station hands"}
        ]
        assert result["conflicts"][0]["type"] == "marker_missing"
        assert result["conflicts"][0]["segment_id"] == str(tracked["segment_id"])
        segment = _segment(db_session, tracked["segment_id"])
        assert (segment["start_offset"], segment["end_offset"]) == (5, 22)

    def test_empty_range_is_an_orphan(
        self, auth_client: TestClient, fake_provider: FakeDocumentProvider, headers, tracked
    ):
        fake_provider.set_range("gdoc-1", tracked["segment_id"], 9, 9)

        result = _sync(auth_client, headers, tracked["document_id"])

        assert len(result["orphaned_segments"]) == 1
        assert result["updated_segments"] == 0

    @pytest.mark.parametrize("status", [403, 404])
    def test_access_loss_deactivates_document(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        headers,
        tracked,
        status,
    ):
        fake_provider.fail_file("gdoc-1", status)

        result = _sync(auth_client, headers, tracked["document_id"])

        assert result["status"] == "failed"
        assert [(c["segment_id"], c["type"]) for c in result["conflicts"]] == [
            ("all", "document_access_lost")
        ]
        assert _document(db_session, tracked["document_id"])["is_active"] is False
        failures = db_session.execute(
            text("SELECT COUNT(*) FROM sync_log WHERE document_id = :id AND status = 'failed'"),
            {"id": tracked["document_id"]},
        ).scalar_one()
        assert failures == 1

    def test_upstream_error_changes_nothing(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        user_id,
        headers,
        tracked,
    ):
        fake_provider.fail_file("gdoc-1", 500)

        response = auth_client.post(
            f"/api/v1/sync/document/{tracked['document_id']}", headers=headers
        )

        assert response.status_code == 502
        assert response.json()["code"] == "E_PROVIDER_ERROR"
        assert _document(db_session, tracked["document_id"])["is_active"] is True
        assert not is_sync_in_progress(db_session, user_id)

    def test_unexpected_fetch_error_is_logged_as_failed(
        self,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        user_id,
        tracked,
        monkeypatch,
    ):
        def broken_fetch(file_id):
            raise KeyError("body")

        monkeypatch.setattr(fake_provider, "fetch_document", broken_fetch)

        with pytest.raises(KeyError):
            sync_document(db_session, fake_provider, user_id, tracked["document_id"])

        assert _failed_syncs(db_session, tracked["document_id"]) == 1
        assert _document(db_session, tracked["document_id"])["is_active"] is True

    def test_failure_mid_run_rolls_back_every_segment(
        self,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        user_id,
        tracked,
        monkeypatch,
    ):
        tail_id = create_test_segment(
            db_session,
            user_id,
            tracked["document_id"],
            get_category_id(db_session, user_id, "Bit"),
            text_content="yyyy",
            start_offset=23,
        )
        fake_provider.set_range("gdoc-1", tail_id, 23, 27)
        fake_provider.set_text("gdoc-1", "xxxx gas station palms zzzz")
        real_write = reconcile.write_sync_log

        def write_or_fail(db, user_id, action, status, *args, **kwargs):
            if status is SyncStatus.success:
                raise RuntimeError("sync_log unavailable")
            return real_write(db, user_id, action, status, *args, **kwargs)

        monkeypatch.setattr(reconcile, "write_sync_log", write_or_fail)

        with pytest.raises(RuntimeError):
            sync_document(db_session, fake_provider, user_id, tracked["document_id"])

        head = _segment(db_session, tracked["segment_id"])
        tail = _segment(db_session, tail_id)
        assert (head["start_offset"], head["end_offset"]) == (5, 22)
        assert head["text_content"] == "gas station hands"
        assert tail["text_content"] == "yyyy"
        document = _document(db_session, tracked["document_id"])
        assert document["title"] == "Old Title"
        assert document["last_synced_at"] is None
        assert _failed_syncs(db_session, tracked["document_id"]) == 1

    def test_document_route_alias(
        self, auth_client: TestClient, fake_provider: FakeDocumentProvider, headers, tracked
    ):
        fake_provider.set_text("gdoc-1", "xxxx gas station palms yyyy")

        response = auth_client.post(
            f"/api/v1/documents/{tracked['document_id']}/sync", headers=headers
        )

        assert response.status_code == 200
        assert response.json()["data"]["updated_segments"] == 1

    def test_unknown_document(self, auth_client: TestClient, headers):
        response = auth_client.post(f"/api/v1/sync/document/{uuid4()}", headers=headers)

        assert response.status_code == 404
        assert response.json()["code"] == "E_DOCUMENT_NOT_FOUND"


class TestSyncLease:
    def test_held_lease_rejects_sync(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        user_id,
        headers,
        tracked,
    ):
        _hold_lease(db_session, user_id)

        response = auth_client.post(
            f"/api/v1/sync/document/{tracked['document_id']}", headers=headers
        )

        assert response.status_code == 409
        assert response.json()["code"] == "E_SYNC_IN_PROGRESS"
        assert fake_provider.fetch_count == 0

    def test_stale_lease_is_taken_over(
        self, auth_client: TestClient, db_session: Session, user_id, headers, tracked
    ):
        db_session.execute(
            text("""
                UPDATE users SET sync_lease_acquired_at = clock_timestamp() - interval '1 hour'
                WHERE id = :id
            """),
            {"id": user_id},
        )
        db_session.commit()

        response = auth_client.post(
            f"/api/v1/sync/document/{tracked['document_id']}", headers=headers
        )

        assert response.status_code == 200
        assert not is_sync_in_progress(db_session, user_id)

    def test_acquire_and_release(self, db_session: Session, user_id):
        assert acquire_sync_lease(db_session, user_id) is True
        assert acquire_sync_lease(db_session, user_id) is False
        assert is_sync_in_progress(db_session, user_id)

        release_sync_lease(db_session, user_id)

        assert not is_sync_in_progress(db_session, user_id)
        assert acquire_sync_lease(db_session, user_id) is True


class TestRepairMarker:
    def test_repair_picks_nearest_occurrence(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        headers,
        tracked,
    ):
        # Stored at 5; the text now appears at 0 and at 29
        fake_provider.set_text("gdoc-1", "gas station hands. later: xx gas station hands")
        fake_provider.remove_range("gdoc-1", tracked["segment_id"])

        response = auth_client.post(
            f"/api/v1/sync/segments/{tracked['segment_id']}/repair", headers=headers
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert (data["start_offset"], data["end_offset"]) == (0, 17)
        assert data["range_name"] == segment_range_name(tracked["segment_id"])
        span = fake_provider.get_range("gdoc-1", tracked["segment_id"])
        assert (span.start, span.end) == (0, 17)
        segment = _segment(db_session, tracked["segment_id"])
        assert (segment["start_offset"], segment["end_offset"]) == (0, 17)

    def test_repaired_segment_syncs_cleanly(
        self, auth_client: TestClient, fake_provider: FakeDocumentProvider, headers, tracked
    ):
        fake_provider.remove_range("gdoc-1", tracked["segment_id"])
        auth_client.post(f"/api/v1/sync/segments/{tracked['segment_id']}/repair", headers=headers)

        result = _sync(auth_client, headers, tracked["document_id"])

        assert result["orphaned_segments"] == []

    def test_text_gone(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        headers,
        tracked,
    ):
        fake_provider.set_text("gdoc-1", "completely rewritten")
        fake_provider.remove_range("gdoc-1", tracked["segment_id"])

        response = auth_client.post(
            f"/api/v1/sync/segments/{tracked['segment_id']}/repair", headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "E_MARKER_TEXT_NOT_FOUND"
        assert fake_provider.get_range("gdoc-1", tracked["segment_id"]) is None
        segment = _segment(db_session, tracked["segment_id"])
        assert segment["start_offset"] == 5


class TestFullSync:
    @pytest.fixture
    def watcher(self, db_session: Session):
        return create_test_user(db_session, watched_folder_id=WATCH_FOLDER)

    def test_full_sync_adds_removes_and_reports(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        watcher,
    ):
        bit = get_category_id(db_session, watcher, "Bit")
        kept = create_test_document(db_session, watcher, google_file_id="gdoc-kept")
        segment_id = create_test_segment(db_session, watcher, kept, bit, start_offset=5)
        fake_provider.add_document("gdoc-kept", "Kept", DOC_TEXT, folder_id=WATCH_FOLDER)
        fake_provider.set_range("gdoc-kept", segment_id, 5, 22)
        fake_provider.set_text("gdoc-kept", "xxxx gas station palms yyyy")

        gone = create_test_document(db_session, watcher, google_file_id="gdoc-gone")
        fake_provider.add_document("gdoc-gone", "Gone", "text", folder_id="elsewhere")

        locked = create_test_document(db_session, watcher, google_file_id="gdoc-locked")
        fake_provider.add_document("gdoc-locked", "Locked", "text", folder_id=WATCH_FOLDER)
        fake_provider.fail_file("gdoc-locked", 403)

        fake_provider.add_document("gdoc-new", "New", "fresh material", folder_id=WATCH_FOLDER)

        response = auth_client.post("/api/v1/sync/full", headers=auth_headers(watcher))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["documents_synced"] == 1
        assert data["documents_added"] == 1
        assert data["documents_removed"] == 1
        assert data["segments_updated"] == 1
        assert [(e["document_id"], e["google_file_id"]) for e in data["errors"]] == [
            (str(locked), "gdoc-locked")
        ]

        assert _document(db_session, gone)["is_active"] is False
        assert _document(db_session, locked)["is_active"] is False
        new_row = db_session.execute(
            text("SELECT id, is_active FROM documents WHERE google_file_id = 'gdoc-new'")
        ).one()
        assert new_row.is_active is True
        assert fake_provider.get_app_properties("gdoc-new")["cmms_doc_id"] == str(new_row.id)

        status = auth_client.get("/api/v1/sync/status", headers=auth_headers(watcher)).json()
        assert status["data"]["last_full_sync"] is not None
        assert status["data"]["sync_in_progress"] is False

    def test_upstream_error_on_one_document_does_not_stop_the_batch(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        watcher,
    ):
        bit = get_category_id(db_session, watcher, "Bit")
        broken = create_test_document(db_session, watcher, google_file_id="gdoc-broken")
        fake_provider.add_document("gdoc-broken", "Broken", DOC_TEXT, folder_id=WATCH_FOLDER)
        fake_provider.fail_file("gdoc-broken", 500)

        healthy = create_test_document(db_session, watcher, google_file_id="gdoc-healthy")
        segment_id = create_test_segment(db_session, watcher, healthy, bit, start_offset=5)
        fake_provider.add_document("gdoc-healthy", "Healthy", DOC_TEXT, folder_id=WATCH_FOLDER)
        fake_provider.set_range("gdoc-healthy", segment_id, 5, 22)
        fake_provider.set_text("gdoc-healthy", "xxxx gas station palms yyyy")

        response = auth_client.post("/api/v1/sync/full", headers=auth_headers(watcher))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["documents_synced"] == 1
        assert data["segments_updated"] == 1
        assert [(e["document_id"], e["google_file_id"]) for e in data["errors"]] == [
            (str(broken), "gdoc-broken")
        ]
        assert _segment(db_session, segment_id)["text_content"] == "gas station palms"
        assert _document(db_session, healthy)["last_synced_at"] is not None
        assert _document(db_session, broken)["is_active"] is True
        assert _failed_syncs(db_session, broken) == 1
        full_sync = db_session.execute(
            text("SELECT status FROM sync_log WHERE user_id = :id AND action = 'full_sync'"),
            {"id": watcher},
        ).scalar_one()
        assert full_sync == "partial"
        assert not is_sync_in_progress(db_session, watcher)

    def test_document_leaving_and_returning_is_reactivated(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        watcher,
    ):
        fake_provider.add_document("gdoc-1", "Roaming", "text", folder_id=WATCH_FOLDER)
        headers = auth_headers(watcher)
        auth_client.post("/api/v1/sync/full", headers=headers)

        fake_provider.move_to_folder("gdoc-1", "elsewhere")
        removed = auth_client.post("/api/v1/sync/full", headers=headers).json()["data"]
        fake_provider.move_to_folder("gdoc-1", WATCH_FOLDER)
        returned = auth_client.post("/api/v1/sync/full", headers=headers).json()["data"]

        assert removed["documents_removed"] == 1
        assert returned["documents_added"] == 1
        count = db_session.execute(
            text("SELECT COUNT(*) FROM documents WHERE google_file_id = 'gdoc-1'")
        ).scalar_one()
        assert count == 1

    def test_listing_failure(
        self,
        auth_client: TestClient,
        db_session: Session,
        fake_provider: FakeDocumentProvider,
        watcher,
    ):
        fake_provider.fail_listing(500)

        response = auth_client.post("/api/v1/sync/full", headers=auth_headers(watcher))

        assert response.status_code == 502
        assert not is_sync_in_progress(db_session, watcher)

    def test_requires_watch_folder(self, auth_client: TestClient, headers):
        response = auth_client.post("/api/v1/sync/full", headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "E_WATCH_FOLDER_MISSING"

    def test_held_lease(self, auth_client: TestClient, db_session: Session, watcher):
        _hold_lease(db_session, watcher)

        response = auth_client.post("/api/v1/sync/full", headers=auth_headers(watcher))

        assert response.status_code == 409


class TestBackgroundSync:
    @pytest.fixture
    def watcher(self, db_session: Session):
        return create_test_user(db_session, watched_folder_id=WATCH_FOLDER)

    def test_background_returns_task_id(
        self, auth_client: TestClient, monkeypatch: pytest.MonkeyPatch, watcher
    ):
        from cmms.tasks import sync_watch_folder

        calls = []

        class _Result:
            id = "task-123"

        def fake_apply_async(*args, **kwargs):
            calls.append(kwargs)
            return _Result()

        monkeypatch.setattr(sync_watch_folder, "apply_async", fake_apply_async)

        response = auth_client.post(
            "/api/v1/sync/full?background=true", headers=auth_headers(watcher)
        )

        assert response.status_code == 202
        assert response.json()["data"] == {"task_id": "task-123"}
        assert calls[0]["args"] == [str(watcher)]
        assert calls[0]["queue"] == "sync"

    def test_broker_down(
        self, auth_client: TestClient, monkeypatch: pytest.MonkeyPatch, watcher
    ):
        from cmms.tasks import sync_watch_folder

        def broken_apply_async(*args, **kwargs):
            raise ConnectionError("broker unreachable")

        monkeypatch.setattr(sync_watch_folder, "apply_async", broken_apply_async)

        response = auth_client.post(
            "/api/v1/sync/full?background=true", headers=auth_headers(watcher)
        )

        assert response.status_code == 503
        assert response.json()["code"] == "E_SYNC_UNAVAILABLE"


class TestSyncStatus:
    def test_fresh_user(self, auth_client: TestClient, headers):
        data = auth_client.get("/api/v1/sync/status", headers=headers).json()["data"]

        assert data == {
            "last_full_sync": None,
            "last_document_sync": None,
            "pending_changes": 0,
            "sync_in_progress": False,
            "watched_folder": None,
        }

    def test_pending_and_last_document_sync(
        self,
        auth_client: TestClient,
        db_session: Session,
        user_id,
        headers,
        tracked,
    ):
        create_test_document(db_session, user_id)

        before = auth_client.get("/api/v1/sync/status", headers=headers).json()["data"]
        _sync(auth_client, headers, tracked["document_id"])
        after = auth_client.get("/api/v1/sync/status", headers=headers).json()["data"]

        assert before["pending_changes"] == 2
        assert before["last_document_sync"] is None
        assert after["last_document_sync"]["document_id"] == str(tracked["document_id"])

    def test_reports_watch_folder_and_lease(
        self, auth_client: TestClient, db_session: Session
    ):
        watcher = create_test_user(db_session, watched_folder_id=WATCH_FOLDER)
        _hold_lease(db_session, watcher)

        data = auth_client.get("/api/v1/sync/status", headers=auth_headers(watcher)).json()["data"]

        assert data["watched_folder"] == {"id": WATCH_FOLDER}
        assert data["sync_in_progress"] is True
