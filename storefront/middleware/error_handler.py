import logging
import traceback
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError
from storefront.utils.exceptions import AppException, ErrorCode, ErrorKind

logger = logging.getLogger(__name__)


def _error_body(message: str, code: str, kind: ErrorKind, details=None, field=None) -> dict:
    return {
        "success": False,
        "message": message,
        "error": {
            "code": code,
            "kind": kind.value,
            "details": details,
            "field": field,
        }
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle all AppException subclasses (our custom exceptions)."""
    detail = exc.detail
    headers = None
    retry_after = detail["error"].get("retryAfter") or detail["error"].get("lockDuration")
    if retry_after:
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": detail.get("message", "An error occurred"),
            "error": detail.get("error", {"code": ErrorCode.INTERNAL_SERVER_ERROR}),
        },
        headers=headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle Pydantic validation errors (422).
    Converts FastAPI's default validation error format into our standardized format.
    """
    details = []
    for error in exc.errors():
        # loc is a tuple like ("body", "email")
        loc = error.get("loc", [])
        field = ".".join(str(l) for l in loc if l not in ("body", "query")) if loc else "unknown"
        details.append({
            "field": field or "body",
            "message": error.get("msg", "Invalid value"),
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("Validation error. Please check your input.",
                            ErrorCode.VALIDATION_ERROR, ErrorKind.VALIDATION, details=details),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """
    Handle SQLAlchemy IntegrityError (unique constraint violations, FK violations).
    Prevents raw DB errors from leaking to the client.
    """
    logger.warning(f"IntegrityError on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=_error_body("A record with this data already exists.",
                            ErrorCode.DUPLICATE_ENTRY, ErrorKind.CONFLICT),
    )


async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Redis / database connectivity failures and timeouts.
    Reported as retryable 503; the request is never retried server-side.
    """
    logger.error(f"Store unavailable on {request.method} {request.url.path}: {exc!r}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=_error_body("Service temporarily unavailable. Please try again.",
                            ErrorCode.SERVICE_UNAVAILABLE, ErrorKind.INTERNAL),
        headers={"Retry-After": "1"},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unexpected exceptions.
    Logs the full traceback, returns a safe 500 response.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}\n"
        f"{''.join(traceback.format_exception(exc))}"
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("An unexpected error occurred. Please try again later.",
                            ErrorCode.INTERNAL_SERVER_ERROR, ErrorKind.INTERNAL),
    )
