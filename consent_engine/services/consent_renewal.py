"""
Consent Renewal Calculator

Pure helpers for renewing a consent. The new expiry is always anchored on
the current expiry, never on the renewal time, so renewing early neither
gains nor loses days.
"""

from datetime import datetime

from consent_engine.exceptions import DurationOutOfRangeError, ValidationError
from consent_engine.schemas.consent import ConsentPolicy, RenewalHistoryEntry, RenewedBy
from consent_engine.utils.dates import add_months, ensure_utc


def calculate_consent_expiry(consent_at: datetime, duration_months: int) -> datetime:
    """Initial expiry of a consent granted at `consent_at`."""
    return add_months(ensure_utc(consent_at), duration_months)


def calculate_renewal_expiry(current_expires_at: datetime, duration_months: int) -> datetime:
    """New expiry after renewing for `duration_months`, counted from the current expiry."""
    if duration_months < 1:
        raise ValidationError("Renewal duration must be at least one month", field="duration_months")
    return add_months(ensure_utc(current_expires_at), duration_months)


def create_renewal_entry(
    previous_expires_at: datetime,
    new_expires_at: datetime,
    renewed_by: RenewedBy | str,
    duration_months: int,
    now: datetime,
) -> RenewalHistoryEntry:
    return RenewalHistoryEntry(
        previous_expires_at=ensure_utc(previous_expires_at),
        new_expires_at=ensure_utc(new_expires_at),
        renewed_by=RenewedBy(renewed_by),
        duration_months=duration_months,
        occurred_at=ensure_utc(now),
    )


def validate_renewal_duration(duration_months: int, policy: ConsentPolicy) -> int:
    """
    Check a requested duration against the template's bounds.

    Raises:
        DurationOutOfRangeError: If the duration is outside [min, max]
    """
    if not policy.min_consent_duration <= duration_months <= policy.max_consent_duration:
        raise DurationOutOfRangeError(
            duration_months=duration_months,
            min_months=policy.min_consent_duration,
            max_months=policy.max_consent_duration,
        )
    return duration_months


def resolve_renewal_duration(
    requested_months: int | None,
    record_months: int | None,
    policy: ConsentPolicy,
) -> int:
    """Requested duration, else the record's current duration, else the template default."""
    if requested_months is not None:
        return requested_months
    return record_months or policy.default_consent_duration


def append_renewal_entry(
    history: list[RenewalHistoryEntry], entry: RenewalHistoryEntry
) -> list[RenewalHistoryEntry]:
    """Return a new history list with `entry` appended; the input list is left untouched."""
    return [*history, entry]
