"""
Tests for structured logging
"""

import json
import logging
import sys

from fastapi import FastAPI
from fastapi.testclient import TestClient

from consent_engine.middleware.logging import (
    RequestIdFilter,
    StructuredFormatter,
    StructuredLoggingMiddleware,
    request_id_var,
)


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("consent_engine.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_json_output(self):
        request_id_var.set("consent_expiry-abc123")
        record = make_record("Sent warning", submission_id=7, threshold_days=14, unrelated="dropped")
        RequestIdFilter().filter(record)

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Sent warning"
        assert data["level"] == "INFO"
        assert data["request_id"] == "consent_expiry-abc123"
        assert data["submission_id"] == 7
        assert data["threshold_days"] == 14
        assert "unrelated" not in data

    def test_exception_included(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(StructuredFormatter().format(record))

        assert "ValueError: bad" in data["exception"]


class TestStructuredLoggingMiddleware:
    def make_client(self):
        app = FastAPI()
        app.add_middleware(StructuredLoggingMiddleware)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        return TestClient(app)

    def test_echoes_request_id(self):
        response = self.make_client().get("/ping", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_generates_request_id(self):
        response = self.make_client().get("/ping")

        assert response.headers["X-Request-ID"]

    def test_logs_request_line(self, caplog):
        with caplog.at_level(logging.INFO, logger="consent_engine.access"):
            self.make_client().get("/ping")

        assert any("GET /ping - 200" in r.getMessage() for r in caplog.records)
