"""Google Docs / Drive client abstraction.

Provides the operations the sync and document services need:
- Fetch a document's plain text and its segment named ranges
- List the Google Docs in a folder
- Read file metadata, copy files, tag files with app properties
- Create a new document from text
- Create a segment named range

Every offset exchanged through this interface is a plain-text code point
offset (see document_text.py); the Docs index arithmetic stays inside
GoogleWorkspaceClient. Clients are built per user from that user's
credentials (see services/credentials.py).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from cmms.errors import ApiError, ApiErrorCode
from cmms.google.document_text import extract_document_text
from cmms.logging import get_logger

logger = get_logger(__name__)

SEGMENT_RANGE_PREFIX = "cmms_segment_"
GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"

DOCS_API_URL = "https://docs.googleapis.com/v1/documents"
DRIVE_API_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_FILE_FIELDS = "id,name,mimeType,parents,modifiedTime"


def segment_range_name(segment_id: Any) -> str:
    """Named range name that marks a segment in the live document."""
    return f"{SEGMENT_RANGE_PREFIX}{segment_id}"


@dataclass(frozen=True)
class NamedRangeSpan:
    """Plain-text span covered by a named range."""

    start: int
    end: int


@dataclass(frozen=True)
class DocumentSnapshot:
    """Live state of a document at fetch time.

    ranges maps segment id (as a string) to the span of its first named
    range instance.
    """

    file_id: str
    title: str
    text: str
    ranges: dict[str, NamedRangeSpan] = field(default_factory=dict)


@dataclass(frozen=True)
class FileMetadata:
    """Drive metadata for a file."""

    id: str
    name: str
    mime_type: str | None = None
    parents: tuple[str, ...] = ()
    modified_time: datetime | None = None


class ProviderError(Exception):
    """Google API failure.

    status_code is the upstream HTTP status when there was a response,
    502 for transport failures and 504 for timeouts.
    """

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_access_lost(self) -> bool:
        """Whether the file is deleted or no longer shared with the user."""
        return self.status_code in (403, 404)


def api_error_from_provider(e: ProviderError) -> ApiError:
    """Translate a ProviderError into the API error the client should see."""
    if e.status_code == 404:
        return ApiError(ApiErrorCode.E_PROVIDER_NOT_FOUND, "Google file not found")
    if e.status_code == 403:
        return ApiError(
            ApiErrorCode.E_DOCUMENT_ACCESS_LOST, "Google file is no longer accessible"
        )
    if e.status_code == 401:
        return ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Google authorization failed")
    if e.status_code == 504:
        return ApiError(ApiErrorCode.E_PROVIDER_TIMEOUT, "Google API timed out")
    return ApiError(ApiErrorCode.E_PROVIDER_ERROR, f"Google API error: {e.message}")


class DocumentProviderBase(ABC):
    """Abstract base class for document provider implementations."""

    @abstractmethod
    def fetch_document(self, file_id: str) -> DocumentSnapshot:
        """Fetch plain text, title and segment ranges of a document.

        Raises:
            ProviderError: If the document cannot be read.
        """
        ...

    @abstractmethod
    def list_folder_documents(self, folder_id: str) -> list[FileMetadata]:
        """List every non-trashed Google Doc directly inside a folder.

        Raises:
            ProviderError: If the listing fails.
        """
        ...

    @abstractmethod
    def get_file_metadata(self, file_id: str) -> FileMetadata:
        """Fetch Drive metadata for a file.

        Raises:
            ProviderError: If the file is missing or inaccessible.
        """
        ...

    @abstractmethod
    def copy_file(self, file_id: str, folder_id: str) -> FileMetadata:
        """Copy a file into a folder and return the copy's metadata.

        Raises:
            ProviderError: If the copy fails.
        """
        ...

    @abstractmethod
    def set_app_properties(self, file_id: str, properties: dict[str, str]) -> None:
        """Attach private app properties to a file.

        Raises:
            ProviderError: If the update fails.
        """
        ...

    @abstractmethod
    def create_document(self, title: str, text: str, folder_id: str) -> FileMetadata:
        """Create a Google Doc containing text inside a folder.

        Raises:
            ProviderError: If any step of the creation fails.
        """
        ...

    @abstractmethod
    def create_named_range(self, file_id: str, name: str, start: int, end: int) -> None:
        """Create a named range over a plain-text span.

        Args:
            file_id: Google file id.
            name: Range name (see segment_range_name()).
            start: Start offset into the plain text.
            end: End offset (exclusive) into the plain text.

        Raises:
            ProviderError: If the update fails.
        """
        ...


def _parse_rfc3339(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _metadata_from_json(data: dict[str, Any]) -> FileMetadata:
    return FileMetadata(
        id=data["id"],
        name=data.get("name", ""),
        mime_type=data.get("mimeType"),
        parents=tuple(data.get("parents", [])),
        modified_time=_parse_rfc3339(data.get("modifiedTime")),
    )


def _error_message(response: httpx.Response) -> str:
    """Google's error message when the body is `{"error": {"message": ...}}`."""
    fallback = response.reason_phrase or "Google API error"
    try:
        body = response.json()
    except ValueError:
        return fallback
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"] or fallback
    if isinstance(error, str) and error:
        return error
    return fallback


class GoogleWorkspaceClient(DocumentProviderBase):
    """Production client for the Docs v1 and Drive v3 REST APIs.

    Uses httpx with a bearer access token that belongs to one user.
    """

    def __init__(self, access_token: str, timeout: float = 30.0):
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._timeout = timeout

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Google API timed out: {method} {url}", status_code=504) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Google API request failed: {e}", status_code=502) from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                "google_api_error",
                method=method,
                status_code=response.status_code,
            )
            raise ProviderError(message, status_code=response.status_code)

        if not response.content:
            return {}
        return response.json()

    def fetch_document(self, file_id: str) -> DocumentSnapshot:
        data = self._request(
            "GET",
            f"{DOCS_API_URL}/{file_id}",
            params={"fields": "documentId,title,body,namedRanges"},
        )
        text, index_map = extract_document_text(data.get("body"))

        ranges: dict[str, NamedRangeSpan] = {}
        for name, group in (data.get("namedRanges") or {}).items():
            if not name.startswith(SEGMENT_RANGE_PREFIX):
                continue
            instances = group.get("namedRanges") or []
            spans = instances[0].get("ranges") if instances else None
            if not spans:
                continue
            first = spans[0]
            ranges[name[len(SEGMENT_RANGE_PREFIX) :]] = NamedRangeSpan(
                start=index_map.to_text_offset(first.get("startIndex", 0)),
                end=index_map.to_text_offset(first.get("endIndex", 0)),
            )

        return DocumentSnapshot(
            file_id=data.get("documentId", file_id),
            title=data.get("title", ""),
            text=text,
            ranges=ranges,
        )

    def list_folder_documents(self, folder_id: str) -> list[FileMetadata]:
        query = (
            f"'{folder_id}' in parents and mimeType='{GOOGLE_DOC_MIME_TYPE}' and trashed=false"
        )
        files: list[FileMetadata] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {
                "q": query,
                "fields": f"nextPageToken,files({DRIVE_FILE_FIELDS})",
                "pageSize": 100,
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", DRIVE_API_URL, params=params)
            files.extend(_metadata_from_json(f) for f in data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                return files

    def get_file_metadata(self, file_id: str) -> FileMetadata:
        data = self._request(
            "GET", f"{DRIVE_API_URL}/{file_id}", params={"fields": DRIVE_FILE_FIELDS}
        )
        return _metadata_from_json(data)

    def copy_file(self, file_id: str, folder_id: str) -> FileMetadata:
        data = self._request(
            "POST",
            f"{DRIVE_API_URL}/{file_id}/copy",
            params={"fields": DRIVE_FILE_FIELDS},
            json={"parents": [folder_id]},
        )
        return _metadata_from_json(data)

    def set_app_properties(self, file_id: str, properties: dict[str, str]) -> None:
        self._request(
            "PATCH",
            f"{DRIVE_API_URL}/{file_id}",
            params={"fields": "id"},
            json={"appProperties": properties},
        )

    def create_document(self, title: str, text: str, folder_id: str) -> FileMetadata:
        created = self._request("POST", DOCS_API_URL, json={"title": title})
        file_id = created["documentId"]

        if text:
            self._request(
                "POST",
                f"{DOCS_API_URL}/{file_id}:batchUpdate",
                json={"requests": [{"insertText": {"location": {"index": 1}, "text": text}}]},
            )

        current = self.get_file_metadata(file_id)
        data = self._request(
            "PATCH",
            f"{DRIVE_API_URL}/{file_id}",
            params={
                "addParents": folder_id,
                "removeParents": ",".join(current.parents),
                "fields": DRIVE_FILE_FIELDS,
            },
            json={},
        )
        return _metadata_from_json(data)

    def create_named_range(self, file_id: str, name: str, start: int, end: int) -> None:
        data = self._request(
            "GET", f"{DOCS_API_URL}/{file_id}", params={"fields": "body"}
        )
        _, index_map = extract_document_text(data.get("body"))
        self._request(
            "POST",
            f"{DOCS_API_URL}/{file_id}:batchUpdate",
            json={
                "requests": [
                    {
                        "createNamedRange": {
                            "name": name,
                            "range": {
                                "startIndex": index_map.to_doc_index(start),
                                "endIndex": index_map.to_doc_index(end),
                            },
                        }
                    }
                ]
            },
        )


@dataclass
class _FakeFile:
    title: str
    text: str
    folder_id: str | None
    modified_time: datetime
    ranges: dict[str, NamedRangeSpan] = field(default_factory=dict)
    app_properties: dict[str, str] = field(default_factory=dict)


class FakeDocumentProvider(DocumentProviderBase):
    """In-memory provider for tests and local development without Google.

    Offsets are plain-text offsets directly; there is no Docs index layer.
    """

    def __init__(self):
        self._files: dict[str, _FakeFile] = {}
        self._failures: dict[str, int] = {}  # file_id -> status code
        self._listing_failure: int | None = None
        self.fetch_count = 0

    def _check(self, file_id: str) -> _FakeFile:
        if file_id in self._failures:
            raise ProviderError(f"Simulated failure for {file_id}", self._failures[file_id])
        if file_id not in self._files:
            raise ProviderError("File not found", status_code=404)
        return self._files[file_id]

    def fetch_document(self, file_id: str) -> DocumentSnapshot:
        self.fetch_count += 1
        f = self._check(file_id)
        return DocumentSnapshot(
            file_id=file_id, title=f.title, text=f.text, ranges=dict(f.ranges)
        )

    def list_folder_documents(self, folder_id: str) -> list[FileMetadata]:
        if self._listing_failure is not None:
            raise ProviderError("Simulated listing failure", self._listing_failure)
        return [
            self._metadata(file_id, f)
            for file_id, f in self._files.items()
            if f.folder_id == folder_id
        ]

    def get_file_metadata(self, file_id: str) -> FileMetadata:
        return self._metadata(file_id, self._check(file_id))

    def copy_file(self, file_id: str, folder_id: str) -> FileMetadata:
        source = self._check(file_id)
        copy_id = f"{file_id}-copy-{len(self._files)}"
        self.add_document(copy_id, f"Copy of {source.title}", source.text, folder_id=folder_id)
        return self.get_file_metadata(copy_id)

    def set_app_properties(self, file_id: str, properties: dict[str, str]) -> None:
        self._check(file_id).app_properties.update(properties)

    def create_document(self, title: str, text: str, folder_id: str) -> FileMetadata:
        file_id = f"fake-doc-{len(self._files) + 1}"
        self.add_document(file_id, title, text, folder_id=folder_id)
        return self.get_file_metadata(file_id)

    def create_named_range(self, file_id: str, name: str, start: int, end: int) -> None:
        f = self._check(file_id)
        if name.startswith(SEGMENT_RANGE_PREFIX):
            f.ranges.setdefault(name[len(SEGMENT_RANGE_PREFIX) :], NamedRangeSpan(start, end))

    @staticmethod
    def _metadata(file_id: str, f: _FakeFile) -> FileMetadata:
        return FileMetadata(
            id=file_id,
            name=f.title,
            mime_type=GOOGLE_DOC_MIME_TYPE,
            parents=(f.folder_id,) if f.folder_id else (),
            modified_time=f.modified_time,
        )

    # Test helper methods

    def add_document(
        self,
        file_id: str,
        title: str,
        text: str,
        *,
        folder_id: str | None = None,
        modified_time: datetime | None = None,
    ) -> None:
        """Store a document directly (test helper)."""
        self._files[file_id] = _FakeFile(
            title=title,
            text=text,
            folder_id=folder_id,
            modified_time=modified_time or datetime.now(UTC),
        )

    def set_text(self, file_id: str, text: str, title: str | None = None) -> None:
        """Replace a document's text, leaving ranges untouched (test helper)."""
        f = self._files[file_id]
        f.text = text
        if title is not None:
            f.title = title
        f.modified_time = datetime.now(UTC)

    def set_range(self, file_id: str, segment_id: Any, start: int, end: int) -> None:
        """Place or move a segment's named range (test helper)."""
        self._files[file_id].ranges[str(segment_id)] = NamedRangeSpan(start, end)

    def remove_range(self, file_id: str, segment_id: Any) -> None:
        """Delete a segment's named range (test helper)."""
        self._files[file_id].ranges.pop(str(segment_id), None)

    def get_range(self, file_id: str, segment_id: Any) -> NamedRangeSpan | None:
        """Return a segment's named range, if any (test helper)."""
        return self._files[file_id].ranges.get(str(segment_id))

    def get_app_properties(self, file_id: str) -> dict[str, str]:
        """Return app properties stored on a file (test helper)."""
        return dict(self._files[file_id].app_properties)

    def move_to_folder(self, file_id: str, folder_id: str | None) -> None:
        """Change a file's parent folder (test helper)."""
        self._files[file_id].folder_id = folder_id

    def fail_file(self, file_id: str, status_code: int) -> None:
        """Make every call touching file_id fail with status_code (test helper)."""
        self._failures[file_id] = status_code

    def fail_listing(self, status_code: int = 500) -> None:
        """Make folder listing fail (test helper)."""
        self._listing_failure = status_code
