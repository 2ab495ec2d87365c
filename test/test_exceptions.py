"""
Tests for custom exception classes and the global error handlers

Tests exception initialization, messages, status codes, details, and the
JSON error envelope.
"""

import pytest
from fastapi import FastAPI, HTTPException, status
from fastapi.testclient import TestClient

from consent_engine.exception_handlers import register_exception_handlers
from consent_engine.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConsentEngineError,
    DurationOutOfRangeError,
    ErrorCode,
    InvalidOperationError,
    PersistenceError,
    ResourceNotFoundError,
    SubmissionNotFoundError,
    TransientDeliveryError,
    UnreadableRecordError,
    ValidationError,
)


class TestConsentEngineError:
    """Test base ConsentEngineError class"""

    def test_defaults(self):
        exc = ConsentEngineError("Test error")

        assert str(exc) == "Test error"
        assert exc.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert exc.details == {}
        assert exc.error_code == ErrorCode.INTERNAL_ERROR

    def test_error_code_override(self):
        exc = ConsentEngineError("Test", error_code=ErrorCode.UNKNOWN_ERROR)

        assert exc.error_code == ErrorCode.UNKNOWN_ERROR


class TestTaxonomy:
    def test_configuration_error(self):
        exc = ConfigurationError(setting="cron_secret")

        assert exc.message == "Cron job not configured"
        assert exc.status_code == 500
        assert exc.details == {"setting": "cron_secret"}

    def test_authorization_error(self):
        exc = AuthorizationError()

        assert exc.status_code == 401
        assert exc.error_code == ErrorCode.AUTH_UNAUTHORIZED

    def test_validation_error_carries_field(self):
        exc = ValidationError("Bad duration", field="duration_months")

        assert exc.status_code == 400
        assert exc.details == {"field": "duration_months"}

    def test_duration_out_of_range(self):
        exc = DurationOutOfRangeError(duration_months=24, min_months=3, max_months=12)

        assert isinstance(exc, ValidationError)
        assert exc.message == "Consent duration must be between 3 and 12 months"
        assert exc.details["duration_months"] == 24
        assert exc.error_code == ErrorCode.VALIDATION_DURATION_OUT_OF_RANGE

    def test_transient_delivery_error(self):
        exc = TransientDeliveryError("SMTP timeout", record_id=5)

        assert exc.status_code == 502
        assert exc.details == {"record_id": 5}

    def test_persistence_error(self):
        exc = PersistenceError(record_id=5, operation="apply_renewal")

        assert exc.message == "A database error occurred"
        assert exc.details == {"record_id": 5, "operation": "apply_renewal"}

    def test_unreadable_record(self):
        exc = UnreadableRecordError(7, "Invalid JSON")

        assert exc.status_code == 500
        assert exc.error_code == ErrorCode.RECORD_UNREADABLE
        assert exc.details == {"record_id": 7, "reason": "Invalid JSON"}

    def test_not_found(self):
        assert ResourceNotFoundError("Template", 3).message == "Template with id '3' not found"
        assert ResourceNotFoundError("Template").message == "Template not found"
        exc = SubmissionNotFoundError(9)
        assert exc.status_code == 404
        assert exc.error_code == ErrorCode.RESOURCE_SUBMISSION_NOT_FOUND

    def test_invalid_operation(self):
        exc = InvalidOperationError("Consent already withdrawn")

        assert exc.status_code == 409
        assert exc.error_code == ErrorCode.OPERATION_NOT_ALLOWED


class TestErrorEnvelope:
    @pytest.fixture
    def client(self):
        test_app = FastAPI()
        register_exception_handlers(test_app)

        @test_app.get("/engine-error")
        async def engine_error():
            raise InvalidOperationError("Consent already withdrawn", details={"submission_id": 1})

        @test_app.get("/http-error")
        async def http_error():
            raise HTTPException(status_code=404, detail="Nothing here")

        @test_app.get("/crash")
        async def crash():
            raise RuntimeError("secret internals")

        @test_app.get("/typed/{item_id}")
        async def typed(item_id: int):
            return {"item_id": item_id}

        with TestClient(test_app, raise_server_exceptions=False) as c:
            yield c

    def test_engine_error(self, client):
        response = client.get("/engine-error")

        error = response.json()["error"]
        assert response.status_code == 409
        assert error["error_code"] == "OPERATION_NOT_ALLOWED"
        assert error["message"] == "Consent already withdrawn"
        assert error["type"] == "Conflict"
        assert error["details"] == {"submission_id": 1}
        assert error["path"] == "/engine-error"

    def test_http_exception(self, client):
        response = client.get("/http-error")

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "RESOURCE_NOT_FOUND"

    def test_unhandled_exception_hides_details(self, client):
        response = client.get("/crash")

        assert response.status_code == 500
        assert "secret internals" not in response.text
        assert response.json()["error"]["error_code"] == "INTERNAL_ERROR"

    def test_request_validation(self, client):
        response = client.get("/typed/not-a-number")

        assert response.status_code == 422
        assert response.json()["error"]["details"]["validation_errors"][0]["field"] == "path.item_id"
