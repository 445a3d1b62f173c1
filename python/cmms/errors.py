"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_DOCUMENT_ACCESS_LOST = "E_DOCUMENT_ACCESS_LOST"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_DOCUMENT_NOT_FOUND = "E_DOCUMENT_NOT_FOUND"
    E_SEGMENT_NOT_FOUND = "E_SEGMENT_NOT_FOUND"
    E_CATEGORY_NOT_FOUND = "E_CATEGORY_NOT_FOUND"
    E_TAG_NOT_FOUND = "E_TAG_NOT_FOUND"
    E_PROVIDER_NOT_FOUND = "E_PROVIDER_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_OFFSETS = "E_INVALID_OFFSETS"
    E_INVALID_COLOR = "E_INVALID_COLOR"
    E_NAME_TAKEN = "E_NAME_TAKEN"
    E_CATEGORY_NOT_EMPTY = "E_CATEGORY_NOT_EMPTY"
    E_WATCH_FOLDER_MISSING = "E_WATCH_FOLDER_MISSING"
    E_MARKER_TEXT_NOT_FOUND = "E_MARKER_TEXT_NOT_FOUND"
    E_GOOGLE_NOT_LINKED = "E_GOOGLE_NOT_LINKED"

    # Conflict errors (409)
    E_ASSOCIATION_EXISTS = "E_ASSOCIATION_EXISTS"
    E_SYNC_IN_PROGRESS = "E_SYNC_IN_PROGRESS"

    # Server errors
    E_INTERNAL = "E_INTERNAL"  # 500
    E_PROVIDER_ERROR = "E_PROVIDER_ERROR"  # 502
    E_PROVIDER_TIMEOUT = "E_PROVIDER_TIMEOUT"  # 504
    E_SYNC_UNAVAILABLE = "E_SYNC_UNAVAILABLE"  # 503


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_DOCUMENT_ACCESS_LOST: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_DOCUMENT_NOT_FOUND: 404,
    ApiErrorCode.E_SEGMENT_NOT_FOUND: 404,
    ApiErrorCode.E_CATEGORY_NOT_FOUND: 404,
    ApiErrorCode.E_TAG_NOT_FOUND: 404,
    ApiErrorCode.E_PROVIDER_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_OFFSETS: 400,
    ApiErrorCode.E_INVALID_COLOR: 400,
    ApiErrorCode.E_NAME_TAKEN: 400,
    ApiErrorCode.E_CATEGORY_NOT_EMPTY: 400,
    ApiErrorCode.E_WATCH_FOLDER_MISSING: 400,
    ApiErrorCode.E_MARKER_TEXT_NOT_FOUND: 400,
    ApiErrorCode.E_GOOGLE_NOT_LINKED: 400,
    ApiErrorCode.E_ASSOCIATION_EXISTS: 409,
    ApiErrorCode.E_SYNC_IN_PROGRESS: 409,
    ApiErrorCode.E_INTERNAL: 500,
    ApiErrorCode.E_PROVIDER_ERROR: 502,
    ApiErrorCode.E_PROVIDER_TIMEOUT: 504,
    ApiErrorCode.E_SYNC_UNAVAILABLE: 503,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """Request conflicts with current state."""

    def __init__(self, code: ApiErrorCode, message: str = "Conflict"):
        super().__init__(code, message)
