"""Google Docs / Drive integration."""

from cmms.google.client import (
    GOOGLE_DOC_MIME_TYPE,
    SEGMENT_RANGE_PREFIX,
    DocumentProviderBase,
    DocumentSnapshot,
    FakeDocumentProvider,
    FileMetadata,
    GoogleWorkspaceClient,
    NamedRangeSpan,
    ProviderError,
    api_error_from_provider,
    segment_range_name,
)

__all__ = [
    "GOOGLE_DOC_MIME_TYPE",
    "SEGMENT_RANGE_PREFIX",
    "DocumentProviderBase",
    "DocumentSnapshot",
    "FakeDocumentProvider",
    "FileMetadata",
    "GoogleWorkspaceClient",
    "NamedRangeSpan",
    "ProviderError",
    "api_error_from_provider",
    "segment_range_name",
]
