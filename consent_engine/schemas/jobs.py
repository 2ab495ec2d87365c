"""Batch job report schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class NotificationOutcome(BaseModel):
    submission_id: int
    patient_email: str
    days_remaining: int
    notification_type: str
    sent: bool = False
    error: str | None = None
    # ErrorCode value classifying `error`
    error_code: str | None = None


class ThresholdSummary(BaseModel):
    threshold_days: int
    candidates: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class ExpiryWarningReport(BaseModel):
    success: bool = True
    dry_run: bool = False
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    timed_out: bool = False
    # Count of failed records per ErrorCode value, reported on live runs too
    errors_by_code: dict[str, int] = Field(default_factory=dict)
    thresholds: list[ThresholdSummary] = Field(default_factory=list)
    # Per-record detail is only returned for dry runs
    notifications: list[NotificationOutcome] | None = None


class RenewalOutcome(BaseModel):
    submission_id: int
    patient_email: str | None
    previous_expires_at: datetime
    new_expires_at: datetime | None = None
    duration_months: int | None = None
    renewed: bool = False
    notification_sent: bool = False
    error: str | None = None
    error_code: str | None = None


class AutoRenewalReport(BaseModel):
    success: bool = True
    dry_run: bool = False
    processed: int = 0
    renewed: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0
    timed_out: bool = False
    errors_by_code: dict[str, int] = Field(default_factory=dict)
    renewals: list[RenewalOutcome] | None = None
