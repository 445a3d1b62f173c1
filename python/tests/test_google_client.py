"""Tests for the Google Docs / Drive REST client.

HTTP is mocked with respx; no network access is needed.
"""

import json
from datetime import UTC, datetime

import httpx
import pytest
import respx

from cmms.google.client import (
    GOOGLE_DOC_MIME_TYPE,
    GoogleWorkspaceClient,
    ProviderError,
    segment_range_name,
)

DOCS_HOST = "docs.googleapis.com"
DRIVE_HOST = "www.googleapis.com"


def _doc_body(*paragraphs: tuple[int, str]) -> dict:
    return {
        "content": [
            {"paragraph": {"elements": [{"startIndex": start, "textRun": {"content": text}}]}}
            for start, text in paragraphs
        ]
    }


def _named_range(name: str, start: int, end: int) -> dict:
    return {
        "name": name,
        "namedRanges": [
            {
                "namedRangeId": f"kix.{name}",
                "name": name,
                "ranges": [{"startIndex": start, "endIndex": end}],
            }
        ],
    }


@pytest.fixture
def google() -> GoogleWorkspaceClient:
    return GoogleWorkspaceClient("ya29.test-token", timeout=5.0)


class TestFetchDocument:
    @respx.mock
    def test_maps_segment_ranges_to_text_offsets(self, google):
        seg = "6f1c2b5e-0000-4000-8000-000000000001"
        respx.get(host=DOCS_HOST, path="/v1/documents/doc-1").respond(
            200,
            json={
                "documentId": "doc-1",
                "title": "Road Notebook",
                "body": _doc_body((1, "Intro 😀 line\n"), (16, "Gas station hands\n")),
                "namedRanges": {
                    segment_range_name(seg): _named_range(segment_range_name(seg), 16, 33),
                    "someone_elses_range": _named_range("someone_elses_range", 1, 3),
                },
            },
        )

        snapshot = google.fetch_document("doc-1")

        assert snapshot.title == "Road Notebook"
        assert list(snapshot.ranges) == [seg]
        span = snapshot.ranges[seg]
        assert snapshot.text[span.start : span.end] == "Gas station hands"

    @respx.mock
    def test_sends_bearer_token(self, google):
        route = respx.get(host=DOCS_HOST, path="/v1/documents/doc-1").respond(
            200, json={"documentId": "doc-1", "title": "t", "body": _doc_body((1, "x\n"))}
        )

        google.fetch_document("doc-1")

        assert route.calls.last.request.headers["Authorization"] == "Bearer ya29.test-token"

    @respx.mock
    @pytest.mark.parametrize("status", [403, 404])
    def test_access_lost_statuses(self, google, status):
        respx.get(host=DOCS_HOST, path="/v1/documents/gone").respond(
            status, json={"error": {"message": "Requested entity was not found."}}
        )

        with pytest.raises(ProviderError) as exc_info:
            google.fetch_document("gone")

        assert exc_info.value.status_code == status
        assert exc_info.value.is_access_lost
        assert exc_info.value.message == "Requested entity was not found."

    @respx.mock
    def test_timeout_maps_to_504(self, google):
        respx.get(host=DOCS_HOST, path="/v1/documents/slow").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )

        with pytest.raises(ProviderError) as exc_info:
            google.fetch_document("slow")

        assert exc_info.value.status_code == 504

    @respx.mock
    def test_transport_failure_maps_to_502(self, google):
        respx.get(host=DOCS_HOST, path="/v1/documents/down").mock(
            side_effect=httpx.ConnectError("refused")
        )

        with pytest.raises(ProviderError) as exc_info:
            google.fetch_document("down")

        assert exc_info.value.status_code == 502
        assert not exc_info.value.is_access_lost

    @respx.mock
    @pytest.mark.parametrize(
        "status,body,message",
        [
            (401, {"error": "invalid_token"}, "invalid_token"),
            (403, {"error": {"code": 403}}, "Forbidden"),
            (404, "Not Found", "Not Found"),
            (502, [{"x": 1}], "Bad Gateway"),
        ],
    )
    def test_unexpected_error_bodies_still_raise_provider_error(
        self, google, status, body, message
    ):
        respx.get(host=DOCS_HOST, path="/v1/documents/doc-1").respond(status, json=body)

        with pytest.raises(ProviderError) as exc_info:
            google.fetch_document("doc-1")

        assert exc_info.value.status_code == status
        assert exc_info.value.message == message

    @respx.mock
    def test_non_json_error_body_uses_reason_phrase(self, google):
        respx.get(host=DOCS_HOST, path="/v1/documents/doc-1").respond(
            503, text="<html>unavailable</html>"
        )

        with pytest.raises(ProviderError) as exc_info:
            google.fetch_document("doc-1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.message == "Service Unavailable"


class TestDriveOperations:
    @respx.mock
    def test_listing_follows_page_tokens(self, google):
        route = respx.get(host=DRIVE_HOST, path="/drive/v3/files").mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={
                        "files": [{"id": "a", "name": "A", "mimeType": GOOGLE_DOC_MIME_TYPE}],
                        "nextPageToken": "page-2",
                    },
                ),
                httpx.Response(
                    200,
                    json={
                        "files": [
                            {
                                "id": "b",
                                "name": "B",
                                "mimeType": GOOGLE_DOC_MIME_TYPE,
                                "parents": ["folder-1"],
                                "modifiedTime": "2026-03-01T10:00:00.000Z",
                            }
                        ]
                    },
                ),
            ]
        )

        files = google.list_folder_documents("folder-1")

        assert [f.id for f in files] == ["a", "b"]
        assert files[1].parents == ("folder-1",)
        assert files[1].modified_time == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert route.call_count == 2
        first, second = (call.request.url.params for call in route.calls)
        assert "'folder-1' in parents" in first["q"]
        assert "trashed=false" in first["q"]
        assert "pageToken" not in first
        assert second["pageToken"] == "page-2"

    @respx.mock
    def test_set_app_properties_patches_file(self, google):
        route = respx.patch(host=DRIVE_HOST, path="/drive/v3/files/doc-1").respond(
            200, json={"id": "doc-1"}
        )

        google.set_app_properties("doc-1", {"cmms_registered": "true"})

        assert json.loads(route.calls.last.request.content) == {
            "appProperties": {"cmms_registered": "true"}
        }

    @respx.mock
    def test_copy_file_targets_folder(self, google):
        route = respx.post(host=DRIVE_HOST, path="/drive/v3/files/doc-1/copy").respond(
            200, json={"id": "doc-2", "name": "Copy", "parents": ["watch"]}
        )

        meta = google.copy_file("doc-1", "watch")

        assert meta.id == "doc-2"
        assert json.loads(route.calls.last.request.content) == {"parents": ["watch"]}


class TestNamedRanges:
    @respx.mock
    def test_create_named_range_converts_offsets_to_doc_indices(self, google):
        respx.get(host=DOCS_HOST, path="/v1/documents/doc-1").respond(
            200, json={"body": _doc_body((1, "😀 intro\n"), (12, "the bit\n"))}
        )
        update = respx.post(host=DOCS_HOST, path="/v1/documents/doc-1:batchUpdate").respond(
            200, json={}
        )

        # "the bit" starts at code point 8 of "😀 intro\nthe bit\n"
        google.create_named_range("doc-1", "cmms_segment_x", 8, 15)

        request = json.loads(update.calls.last.request.content)["requests"][0]
        assert request["createNamedRange"]["name"] == "cmms_segment_x"
        assert request["createNamedRange"]["range"] == {"startIndex": 12, "endIndex": 19}
