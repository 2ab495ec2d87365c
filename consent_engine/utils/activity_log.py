"""
Consent audit trail helpers.

Events are built here and handed to the consent store, which writes the
ActivityLog row in the same transaction as the consent change it describes.
"""

import json
import logging
from datetime import datetime
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy.ext.asyncio import AsyncSession

from consent_engine.models.activity_log import ActivityLog
from consent_engine.schemas.activity import ActivityEvent
from consent_engine.schemas.consent import ConsentCandidate, RenewalHistoryEntry, RenewedBy
from consent_engine.utils.dates import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class ConsentActions:
    RENEW_CONSENT = "RENEW_CONSENT"
    WITHDRAW_CONSENT = "WITHDRAW_CONSENT"
    UPDATE_AUTO_RENEW = "UPDATE_AUTO_RENEW"


def validate_details(details: dict[str, Any] | None) -> str | None:
    """
    Serialize audit details to JSON.

    Raises:
        ValueError: If the details cannot be represented as JSON
    """
    if not details:
        return None
    try:
        return json.dumps(to_jsonable_python(details))
    except (TypeError, ValueError) as e:
        logger.error("Details validation failed. Non-serializable data: %r", details)
        raise ValueError(f"Details must be JSON-serializable. Error: {e}") from e


def record_activity(session: AsyncSession, event: ActivityEvent) -> ActivityLog:
    """Add the audit row to `session`; the caller commits."""
    entry = ActivityLog(
        action=event.action,
        user_id=event.user_id,
        submission_id=event.submission_id,
        timestamp=ensure_utc(event.occurred_at) if event.occurred_at else utcnow(),
        description=event.description,
        details=validate_details(event.details),
    )
    session.add(entry)
    return entry


def renewal_activity(candidate: ConsentCandidate, entry: RenewalHistoryEntry) -> ActivityEvent:
    record = candidate.record
    actor = "automatically" if entry.renewed_by is RenewedBy.AUTO else f"by {entry.renewed_by.value}"
    return ActivityEvent(
        action=ConsentActions.RENEW_CONSENT,
        description=f"Consent for submission {record.id} renewed {actor} for {entry.duration_months} months",
        submission_id=record.id,
        user_id=candidate.user_id,
        occurred_at=entry.occurred_at,
        details={
            "renewed_by": entry.renewed_by.value,
            "duration_months": entry.duration_months,
            "previous_expires_at": entry.previous_expires_at,
            "new_expires_at": entry.new_expires_at,
            "renewal_count": record.renewal_count + 1,
            "organization_id": candidate.organization_id,
        },
    )


def withdrawal_activity(candidate: ConsentCandidate, reason: str | None, now: datetime) -> ActivityEvent:
    record = candidate.record
    return ActivityEvent(
        action=ConsentActions.WITHDRAW_CONSENT,
        description=f"Consent for submission {record.id} withdrawn by patient",
        submission_id=record.id,
        user_id=candidate.user_id,
        occurred_at=now,
        details={
            "reason": reason,
            "consent_at": record.consent_at,
            "consent_expires_at": record.consent_expires_at,
            "organization_id": candidate.organization_id,
        },
    )


def auto_renew_activity(candidate: ConsentCandidate, enabled: bool, now: datetime) -> ActivityEvent:
    record = candidate.record
    return ActivityEvent(
        action=ConsentActions.UPDATE_AUTO_RENEW,
        description=f"Auto-renewal {'enabled' if enabled else 'disabled'} for submission {record.id}",
        submission_id=record.id,
        user_id=candidate.user_id,
        occurred_at=now,
        details={"auto_renew": enabled, "previous": record.auto_renew},
    )
