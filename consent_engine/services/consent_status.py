"""
Consent Status Calculator

Derives a consent's current status from its stored timestamps. Status is
recomputed on every read and never written back to the submission.

Timeline:
    [consent given] --> [expiry - 30d: renewal window opens] --> [expiry: GRACE_PERIOD]
        --> [expiry + grace period: EXPIRED]

WITHDRAWN can happen at any time and takes precedence over the timeline.
"""

from datetime import datetime, timedelta

from consent_engine.schemas.consent import (
    ConsentPolicy,
    ConsentRecord,
    ConsentStatus,
    ConsentStatusResult,
    RenewalUrgency,
    StatusBadge,
)
from consent_engine.utils.dates import days_until, ensure_utc, format_date, pluralize_days

DEFAULT_GRACE_PERIOD_DAYS = 30

# Days before expiry at which each urgency level starts
URGENCY_THRESHOLDS: tuple[tuple[int, RenewalUrgency], ...] = (
    (7, RenewalUrgency.HIGH),
    (14, RenewalUrgency.MEDIUM),
    (30, RenewalUrgency.LOW),
)


def urgency_for_days(days_remaining: int) -> RenewalUrgency:
    """Urgency of an unexpired consent with `days_remaining` days left."""
    for limit, urgency in URGENCY_THRESHOLDS:
        if days_remaining <= limit:
            return urgency
    return RenewalUrgency.NONE


def compute_status(
    consent_given: bool,
    consent_at: datetime | None,
    consent_expires_at: datetime | None,
    consent_withdrawn_at: datetime | None,
    grace_period_days: int | None,
    now: datetime,
) -> ConsentStatusResult:
    """
    Calculate the consent status at `now`.

    Args:
        consent_given: Whether consent was captured at submission time
        consent_at: When consent was granted
        consent_expires_at: End of the current consent window, if tracked
        consent_withdrawn_at: Withdrawal timestamp, if withdrawn
        grace_period_days: Days after expiry during which data stays accessible
        now: Evaluation time

    Returns:
        ConsentStatusResult describing status, accessibility and urgency
    """
    if grace_period_days is None:
        grace_period_days = DEFAULT_GRACE_PERIOD_DAYS
    if grace_period_days < 0:
        raise ValueError("grace_period_days cannot be negative")

    if not consent_given or consent_at is None:
        return ConsentStatusResult(
            status=ConsentStatus.NOT_GIVEN,
            is_accessible=False,
            message="Consent has never been given",
        )

    expires_at = ensure_utc(consent_expires_at)

    if consent_withdrawn_at is not None:
        return ConsentStatusResult(
            status=ConsentStatus.WITHDRAWN,
            is_accessible=False,
            message="Consent has been withdrawn",
            expires_at=expires_at,
        )

    # Records created before duration tracking have no expiry
    if expires_at is None:
        return ConsentStatusResult(
            status=ConsentStatus.ACTIVE,
            is_accessible=True,
            message="Consent is active (no expiry set)",
        )

    now = ensure_utc(now)
    grace_period_ends_at = expires_at + timedelta(days=grace_period_days)
    days_remaining = days_until(expires_at, now)

    if now >= grace_period_ends_at:
        return ConsentStatusResult(
            status=ConsentStatus.EXPIRED,
            is_accessible=False,
            message="Consent has expired and grace period has ended",
            days_remaining=days_remaining,
            expires_at=expires_at,
            grace_period_ends_at=grace_period_ends_at,
            can_renew=False,
            renewal_urgency=RenewalUrgency.CRITICAL,
        )

    if now >= expires_at:
        grace_days_left = days_until(grace_period_ends_at, now)
        return ConsentStatusResult(
            status=ConsentStatus.GRACE_PERIOD,
            is_accessible=True,
            message=f"Consent expired, grace period ends in {pluralize_days(grace_days_left)}",
            days_remaining=days_remaining,
            expires_at=expires_at,
            grace_period_ends_at=grace_period_ends_at,
            can_renew=True,
            renewal_urgency=RenewalUrgency.CRITICAL,
        )

    urgency = urgency_for_days(days_remaining)
    if urgency.is_elevated:
        message = f"Consent expires in {pluralize_days(days_remaining)}"
    else:
        message = f"Consent is active until {format_date(expires_at)}"

    return ConsentStatusResult(
        status=ConsentStatus.ACTIVE,
        is_accessible=True,
        message=message,
        days_remaining=days_remaining,
        expires_at=expires_at,
        grace_period_ends_at=grace_period_ends_at,
        # Renewal only opens inside the warning window
        can_renew=urgency.is_elevated,
        renewal_urgency=urgency,
    )


def compute_record_status(record: ConsentRecord, policy: ConsentPolicy, now: datetime) -> ConsentStatusResult:
    return compute_status(
        consent_given=record.consent_given,
        consent_at=record.consent_at,
        consent_expires_at=record.consent_expires_at,
        consent_withdrawn_at=record.consent_withdrawn_at,
        grace_period_days=policy.grace_period_days,
        now=now,
    )


_STATUS_BADGES: dict[ConsentStatus, StatusBadge] = {
    ConsentStatus.ACTIVE: StatusBadge(label="Active", color="green", icon="check"),
    ConsentStatus.GRACE_PERIOD: StatusBadge(label="Grace Period", color="orange", icon="alert"),
    ConsentStatus.EXPIRED: StatusBadge(label="Expired", color="red", icon="x"),
    ConsentStatus.WITHDRAWN: StatusBadge(label="Withdrawn", color="gray", icon="x"),
    ConsentStatus.NOT_GIVEN: StatusBadge(label="No Consent", color="gray", icon="minus"),
}


def get_status_badge(result: ConsentStatusResult) -> StatusBadge:
    """UI badge for a status. Active consents inside the renewal window show as expiring."""
    if result.status is ConsentStatus.ACTIVE and result.renewal_urgency.is_elevated:
        return StatusBadge(label="Expiring Soon", color="yellow", icon="clock")
    return _STATUS_BADGES[result.status]
