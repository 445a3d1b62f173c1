"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from cmms.schemas.categories import (
    CategoryOut,
    CreateCategoryRequest,
    ReorderCategoriesRequest,
    UpdateCategoryRequest,
)
from cmms.schemas.documents import (
    DocumentDetailOut,
    DocumentFromSelectionRequest,
    DocumentOut,
    DocumentSegmentOut,
    RegisterDocumentRequest,
)
from cmms.schemas.search import (
    DateRange,
    FacetBucket,
    SearchFacets,
    SearchFilters,
    SearchRequest,
    SearchResponse,
    SearchResultOut,
)
from cmms.schemas.segments import (
    AssociateOut,
    AssociateRequest,
    AssociationOut,
    CategoryBrief,
    CreateSegmentRequest,
    DocumentBrief,
    RelatedSegmentOut,
    SegmentOut,
    SegmentTagsRequest,
    UpdateMarkersRequest,
    UpdateSegmentRequest,
)
from cmms.schemas.sync import (
    BackgroundSyncOut,
    DocumentSyncStamp,
    FullSyncError,
    FullSyncResult,
    MarkerRepairResult,
    OrphanedSegment,
    SyncConflict,
    SyncResult,
    SyncStatusOut,
    WatchedFolder,
)
from cmms.schemas.tags import (
    BulkCreateTagsRequest,
    CreateTagRequest,
    TagBrief,
    TagOut,
    UpdateTagRequest,
)
from cmms.schemas.users import (
    LoginOut,
    PreferencesOut,
    UpdateMeRequest,
    UpdatePreferencesRequest,
    UserOut,
)

__all__ = [
    # Categories
    "CategoryOut",
    "CreateCategoryRequest",
    "ReorderCategoriesRequest",
    "UpdateCategoryRequest",
    # Documents
    "DocumentDetailOut",
    "DocumentFromSelectionRequest",
    "DocumentOut",
    "DocumentSegmentOut",
    "RegisterDocumentRequest",
    # Search
    "DateRange",
    "FacetBucket",
    "SearchFacets",
    "SearchFilters",
    "SearchRequest",
    "SearchResponse",
    "SearchResultOut",
    # Segments
    "AssociateOut",
    "AssociateRequest",
    "AssociationOut",
    "CategoryBrief",
    "CreateSegmentRequest",
    "DocumentBrief",
    "RelatedSegmentOut",
    "SegmentOut",
    "SegmentTagsRequest",
    "UpdateMarkersRequest",
    "UpdateSegmentRequest",
    # Sync
    "BackgroundSyncOut",
    "DocumentSyncStamp",
    "FullSyncError",
    "FullSyncResult",
    "MarkerRepairResult",
    "OrphanedSegment",
    "SyncConflict",
    "SyncResult",
    "SyncStatusOut",
    "WatchedFolder",
    # Tags
    "BulkCreateTagsRequest",
    "CreateTagRequest",
    "TagBrief",
    "TagOut",
    "UpdateTagRequest",
    # Users
    "LoginOut",
    "PreferencesOut",
    "UpdateMeRequest",
    "UpdatePreferencesRequest",
    "UserOut",
]
