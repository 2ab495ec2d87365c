"""
Custom Exception Classes for the Consent Engine

This module defines the error taxonomy of the consent lifecycle engine.
Job-level errors (configuration, authorization) abort a whole invocation;
per-record errors (validation, delivery, persistence) are caught by the
batch jobs, classified and counted without stopping the batch.
"""

import enum
from typing import Any

from fastapi import status


class ErrorCode(str, enum.Enum):
    """Machine-readable error codes returned in error responses."""

    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"
    AUTH_UNAUTHORIZED = "AUTH_UNAUTHORIZED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_DURATION_OUT_OF_RANGE = "VALIDATION_DURATION_OUT_OF_RANGE"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    RECORD_UNREADABLE = "RECORD_UNREADABLE"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_SUBMISSION_NOT_FOUND = "RESOURCE_SUBMISSION_NOT_FOUND"
    OPERATION_NOT_ALLOWED = "OPERATION_NOT_ALLOWED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ConsentEngineError(Exception):
    """Base exception class for all consent engine exceptions"""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if error_code is not None:
            self.error_code = error_code
        super().__init__(self.message)


# ============================================================================
# Job-level Exceptions
# ============================================================================


class ConfigurationError(ConsentEngineError):
    """Raised when a required secret or setting is missing"""

    error_code = ErrorCode.CONFIGURATION_MISSING

    def __init__(self, message: str = "Cron job not configured", setting: str | None = None):
        details = {"setting": setting} if setting else {}
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


class AuthorizationError(ConsentEngineError):
    """Raised when the scheduler credential is missing or invalid"""

    error_code = ErrorCode.AUTH_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


# ============================================================================
# Per-record Exceptions
# ============================================================================


class ValidationError(ConsentEngineError):
    """Raised when input validation fails"""

    error_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, details=error_details)


class DurationOutOfRangeError(ValidationError):
    """Raised when a renewal duration falls outside the template's bounds"""

    error_code = ErrorCode.VALIDATION_DURATION_OUT_OF_RANGE

    def __init__(self, duration_months: int, min_months: int, max_months: int):
        super().__init__(
            message=f"Consent duration must be between {min_months} and {max_months} months",
            field="duration_months",
            details={"duration_months": duration_months, "min_months": min_months, "max_months": max_months},
        )


class TransientDeliveryError(ConsentEngineError):
    """Raised when the notification gateway fails for one record"""

    error_code = ErrorCode.DELIVERY_FAILED

    def __init__(self, message: str = "Notification delivery failed", record_id: Any | None = None):
        details = {"record_id": record_id} if record_id is not None else {}
        super().__init__(message=message, status_code=status.HTTP_502_BAD_GATEWAY, details=details)


class PersistenceError(ConsentEngineError):
    """Raised when a consent store write fails for one record"""

    error_code = ErrorCode.PERSISTENCE_FAILED

    def __init__(
        self,
        message: str = "A database error occurred",
        record_id: Any | None = None,
        operation: str | None = None,
    ):
        details: dict[str, Any] = {}
        if record_id is not None:
            details["record_id"] = record_id
        if operation:
            details["operation"] = operation
        super().__init__(message=message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, details=details)


class UnreadableRecordError(ConsentEngineError):
    """Raised when a stored submission cannot be parsed, e.g. a corrupt renewal history"""

    error_code = ErrorCode.RECORD_UNREADABLE

    def __init__(self, record_id: Any, reason: str):
        super().__init__(
            message="Stored renewal history is unreadable",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"record_id": record_id, "reason": reason},
        )


# ============================================================================
# Resource & Lifecycle Exceptions
# ============================================================================


class ResourceNotFoundError(ConsentEngineError):
    """Base class for resource not found errors"""

    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, resource_type: str, resource_id: Any | None = None):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class SubmissionNotFoundError(ResourceNotFoundError):
    """Raised when a submission is not found"""

    error_code = ErrorCode.RESOURCE_SUBMISSION_NOT_FOUND

    def __init__(self, submission_id: Any | None = None):
        super().__init__(resource_type="Submission", resource_id=submission_id)


class InvalidOperationError(ConsentEngineError):
    """Raised when a lifecycle action is not allowed in the consent's current state"""

    error_code = ErrorCode.OPERATION_NOT_ALLOWED

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT, details=details or {})
