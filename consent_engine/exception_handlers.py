"""
Global Exception Handlers for the Consent Engine

Every failure leaving the API is rendered into one envelope:

{
    "error": {
        "status_code": 409,
        "error_code": "OPERATION_NOT_ALLOWED",
        "message": "Consent already withdrawn",
        "type": "Conflict",
        "details": {"submission_id": 12},
        "path": "/api/patient/submissions/12/withdraw"
    }
}
"""

import logging
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from consent_engine.exceptions import ConsentEngineError, ErrorCode

logger = logging.getLogger(__name__)

# Error codes for exceptions raised by the framework rather than the engine
_FRAMEWORK_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.VALIDATION_FAILED,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.AUTH_UNAUTHORIZED,
    status.HTTP_404_NOT_FOUND: ErrorCode.RESOURCE_NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: ErrorCode.OPERATION_NOT_ALLOWED,
    status.HTTP_409_CONFLICT: ErrorCode.OPERATION_NOT_ALLOWED,
}

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def error_type(status_code: int) -> str:
    """Reason phrase for a status code, e.g. 409 -> "Conflict"."""
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def error_envelope(
    request: Request,
    status_code: int,
    message: str,
    error_code: ErrorCode,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "status_code": status_code,
        "error_code": error_code.value,
        "message": message,
        "type": error_type(status_code),
        "path": request.url.path,
    }
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


async def consent_engine_exception_handler(request: Request, exc: ConsentEngineError) -> JSONResponse:
    """
    Render an engine error.

    Server-side failures (persistence, configuration, delivery) are logged at
    ERROR; rejected patient or cron requests only at WARNING. Record context
    from ``exc.details`` is attached to the log line.
    """
    extra: dict[str, Any] = {"status_code": exc.status_code, "error_code": exc.error_code.value}
    submission_id = exc.details.get("submission_id", exc.details.get("record_id"))
    if submission_id is not None:
        extra["submission_id"] = submission_id

    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "%s on %s %s: %s",
        exc.error_code.value,
        request.method,
        request.url.path,
        exc.message,
        extra=extra,
    )
    return error_envelope(request, exc.status_code, exc.message, exc.error_code, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_code = _FRAMEWORK_ERROR_CODES.get(exc.status_code, ErrorCode.UNKNOWN_ERROR)
    logger.warning("%s %s returned %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return error_envelope(request, exc.status_code, str(exc.detail), error_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # "body" is implied for payload errors; path and query prefixes are kept
    validation_errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    logger.warning(
        "Rejected %s %s with %d invalid field(s)", request.method, request.url.path, len(validation_errors)
    )
    return error_envelope(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        ErrorCode.VALIDATION_FAILED,
        {"validation_errors": validation_errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: full traceback to the log, nothing internal to the client."""
    logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return error_envelope(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        GENERIC_ERROR_MESSAGE,
        ErrorCode.INTERNAL_ERROR,
    )


def register_exception_handlers(app: FastAPI) -> None:
    handlers = (
        (ConsentEngineError, consent_engine_exception_handler),
        (StarletteHTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (Exception, unhandled_exception_handler),
    )
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)
