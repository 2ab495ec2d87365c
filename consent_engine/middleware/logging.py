"""
Structured Logging

Log lines are JSON objects correlated by ``request_id``. For API calls the id
comes from the X-Request-ID header (or is generated); scheduled and cron job
runs install their own ``<job>-<hex>`` id, so every record touched by one run
can be pulled out of the aggregated logs with a single filter.
"""

import json
import logging
import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from datetime import datetime, timezone

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

request_id_var: ContextVar[str] = ContextVar("request_id", default="")

REQUEST_ID_HEADER = "X-Request-ID"

# Attributes passed through ``extra=`` that make it into the JSON output
_EXTRA_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "error_code",
    "job",
    "submission_id",
    "threshold_days",
    "dry_run",
)

_QUIET_PATHS = frozenset({"/health"})

_LIBRARY_LEVELS = {
    "apscheduler": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class RequestIdFilter(logging.Filter):
    """Stamp the current request or job run id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("")
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; unknown ``extra`` keys are dropped."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", ""),
        }
        payload.update({key: getattr(record, key) for key in _EXTRA_FIELDS if hasattr(record, key)})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def client_address(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if "X-Real-IP" in request.headers:
        return request.headers["X-Real-IP"]
    return request.client.host if request.client else "unknown"


def level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Access log with timing, plus X-Request-ID propagation."""

    def __init__(self, app: ASGIApp, logger_name: str = "consent_engine.access"):
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request_id_var.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            self._access_log(request, 500, started, error=repr(exc))
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        self._access_log(request, response.status_code, started)
        return response

    def _access_log(self, request: Request, status_code: int, started: float, error: str | None = None) -> None:
        path = request.url.path
        if path in _QUIET_PATHS:
            return

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        message = f"{request.method} {path} - {status_code} ({duration_ms}ms)"
        if error:
            message = f"{message} - {error}"

        self.logger.log(
            level_for_status(status_code),
            message,
            extra={
                "method": request.method,
                "path": path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "client_ip": client_address(request),
            },
        )


def setup_structured_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """
    Replace the root handlers with a single stderr handler.

    Args:
        log_level: Level name for the root and ``consent_engine`` loggers
        json_format: JSON lines when True, a readable one-line format otherwise
    """
    level = logging.getLevelName(log_level.upper())

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(
        StructuredFormatter()
        if json_format
        else logging.Formatter("%(asctime)s %(levelname)-8s %(name)s [%(request_id)s] %(message)s")
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("consent_engine").setLevel(level)
    for name, library_level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)
