"""API response envelope helpers and exception handlers.

All API responses use a consistent envelope:
- Success: { "status": "success", "data": ... }
- List:    { "status": "success", "data": [...], "pagination": {total, limit, offset} }
- Message: { "status": "success", "message": "..." }
- Error:   { "status": "error", "code": "E_...", "message": "...", "request_id": "..." }

The request_id is included in error responses for debugging and support.
Outside prod, unhandled errors also carry the exception message and stack.
"""

import traceback
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cmms.config import get_settings
from cmms.errors import ApiError, ApiErrorCode
from cmms.google.client import ProviderError, api_error_from_provider
from cmms.logging import get_logger, get_request_id

logger = get_logger(__name__)


def success_response(data: Any) -> dict[str, Any]:
    """Wrap data in the success envelope."""
    return {"status": "success", "data": data}


def paginated_response(data: list[Any], total: int, limit: int, offset: int) -> dict[str, Any]:
    """Wrap a page of results in the success envelope with pagination info.

    Args:
        data: The page of serialized items.
        total: Number of matching items independent of limit/offset.
        limit: Page size that was applied.
        offset: Offset that was applied.
    """
    return {
        "status": "success",
        "data": data,
        "pagination": {"total": total, "limit": limit, "offset": offset},
    }


def message_response(message: str) -> dict[str, Any]:
    """Success envelope carrying only a human-readable message."""
    return {"status": "success", "message": message}


def error_response(
    code: ApiErrorCode,
    message: str,
    request_id: str | None = None,
    stack: str | None = None,
) -> dict[str, Any]:
    """Create an error response envelope.

    Args:
        code: The error code enum value.
        message: Human-readable error message.
        request_id: Optional request ID for correlation (auto-populated from context if None).
        stack: Optional formatted traceback (never set in prod).

    Returns:
        Dict with status "error", code, message and request_id.
    """
    if request_id is None:
        request_id = get_request_id()

    body: dict[str, Any] = {"status": "error", "code": code.value, "message": message}
    if request_id:
        body["request_id"] = request_id
    if stack:
        body["stack"] = stack
    return body


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError exceptions and return proper JSON response."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.code, exc.message),
    )


async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    """Map a Google failure that escaped the services to an API error."""
    api_error = api_error_from_provider(exc)
    logger.warning(
        "provider_error",
        upstream_status=exc.status_code,
        code=api_error.code.value,
    )
    return JSONResponse(
        status_code=api_error.status_code,
        content=error_response(api_error.code, api_error.message),
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Handle Starlette HTTPException (unknown routes, bad methods)."""
    status_to_code = {
        400: ApiErrorCode.E_INVALID_REQUEST,
        401: ApiErrorCode.E_UNAUTHENTICATED,
        403: ApiErrorCode.E_FORBIDDEN,
        404: ApiErrorCode.E_NOT_FOUND,
        405: ApiErrorCode.E_INVALID_REQUEST,
        422: ApiErrorCode.E_INVALID_REQUEST,
    }
    code = status_to_code.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "An error occurred"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, message),
    )


def summarize_validation_errors(exc: RequestValidationError) -> str:
    """Render pydantic validation errors as one line, e.g. "body.limit: ..."."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid"))
    return "; ".join(parts) or "Invalid request"


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation failures as 400 E_INVALID_REQUEST."""
    return JSONResponse(
        status_code=400,
        content=error_response(ApiErrorCode.E_INVALID_REQUEST, summarize_validation_errors(exc)),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions and return 500 with E_INTERNAL.

    Logs the exception server-side. In prod the client only sees a generic
    message; elsewhere the message and stack are included.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    if get_settings().is_production:
        content = error_response(ApiErrorCode.E_INTERNAL, "Internal server error")
    else:
        content = error_response(
            ApiErrorCode.E_INTERNAL,
            str(exc) or "Internal server error",
            stack="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
    return JSONResponse(status_code=500, content=content)
