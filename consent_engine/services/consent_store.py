"""
Consent Store

Query/update access to consent-bearing submissions. Every operation opens
its own session so per-record work in a batch can run concurrently.
Rows are returned as ConsentCandidate domain objects.
"""

import json
import logging
from datetime import datetime

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consent_engine.config import settings
from consent_engine.database import AsyncSessionLocal
from consent_engine.exceptions import PersistenceError, UnreadableRecordError
from consent_engine.models.activity_log import ActivityLog
from consent_engine.models.form_template import FormTemplate
from consent_engine.models.organization import Organization
from consent_engine.models.submission import Submission
from consent_engine.models.user import User
from consent_engine.schemas.activity import ActivityEvent, ActivityLogOut
from consent_engine.schemas.consent import ConsentCandidate, ConsentPolicy, ConsentRecord, RenewalHistoryEntry
from consent_engine.schemas.stats import ConsentSnapshot
from consent_engine.utils.activity_log import record_activity
from consent_engine.utils.dates import ensure_utc

logger = logging.getLogger(__name__)

_HISTORY_ADAPTER = TypeAdapter(list[RenewalHistoryEntry])


def load_renewal_history(raw: str | None) -> list[RenewalHistoryEntry]:
    """
    Parse a stored renewal history.

    Raises:
        pydantic.ValidationError: If the JSON is malformed or an entry does not validate
    """
    if not raw:
        return []
    return _HISTORY_ADAPTER.validate_json(raw)


def dump_renewal_history(history: list[RenewalHistoryEntry]) -> str:
    return _HISTORY_ADAPTER.dump_json(history).decode()


def _history_error_summary(exc: PydanticValidationError) -> str:
    first = exc.errors()[0] if exc.error_count() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid renewal history")
    return f"{location}: {message}" if location else message


def require_readable_history(candidate: ConsentCandidate) -> None:
    """
    Refuse to act on a record whose history was dropped while loading.

    Appending to an empty stand-in history would overwrite the stored one.

    Raises:
        UnreadableRecordError: If the stored renewal history could not be parsed
    """
    if candidate.history_error is not None:
        raise UnreadableRecordError(candidate.record.id, candidate.history_error)


def _to_candidate(
    submission: Submission,
    template: FormTemplate,
    organization: Organization,
    user: User | None,
) -> ConsentCandidate:
    history_error = None
    try:
        renewal_history = load_renewal_history(submission.renewal_history)
    except PydanticValidationError as exc:
        history_error = _history_error_summary(exc)
        renewal_history = []
        logger.warning(
            "Submission %s has an unreadable renewal history: %s",
            submission.id,
            history_error,
            extra={"submission_id": submission.id},
        )

    record = ConsentRecord(
        id=submission.id,
        consent_given=submission.consent_given,
        consent_at=ensure_utc(submission.consent_at),
        consent_expires_at=ensure_utc(submission.consent_expires_at),
        consent_duration_months=submission.consent_duration_months,
        consent_withdrawn_at=ensure_utc(submission.consent_withdrawn_at),
        withdrawal_reason=submission.withdrawal_reason,
        auto_renew=submission.auto_renew,
        renewed_at=ensure_utc(submission.renewed_at),
        renewal_count=submission.renewal_count or 0,
        renewal_history=renewal_history,
    )
    policy = ConsentPolicy(
        default_consent_duration=template.default_consent_duration,
        min_consent_duration=template.min_consent_duration,
        max_consent_duration=template.max_consent_duration,
        grace_period_days=_grace_period_days(template.grace_period_days),
        allow_auto_renewal=template.allow_auto_renewal,
    )
    return ConsentCandidate(
        record=record,
        policy=policy,
        user_id=submission.user_id,
        recipient_email=user.email if user else None,
        recipient_name=user.name if user else None,
        form_title=template.title,
        organization_id=organization.id,
        organization_name=organization.name,
        history_error=history_error,
    )


def _grace_period_days(value: int | None) -> int:
    return settings.default_grace_period_days if value is None else value


class ConsentStore:
    """Persistence collaborator for consent records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    @staticmethod
    def _candidate_query():
        return (
            select(Submission, FormTemplate, Organization, User)
            .join(FormTemplate, Submission.form_template_id == FormTemplate.id)
            .join(Organization, FormTemplate.organization_id == Organization.id)
            .outerjoin(User, Submission.user_id == User.id)
        )

    async def _fetch(self, query) -> list[ConsentCandidate]:
        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = result.all()

        candidates = []
        for row in rows:
            submission = row[0]
            try:
                candidates.append(_to_candidate(*row))
            except PydanticValidationError as exc:
                # e.g. a negative grace period on the template
                logger.error(
                    "Skipping submission %s: stored consent data does not validate: %s",
                    submission.id,
                    exc,
                    extra={"submission_id": submission.id, "error_code": UnreadableRecordError.error_code.value},
                )
        return candidates

    async def find_expiring_between(self, start: datetime, end: datetime) -> list[ConsentCandidate]:
        """Given, unwithdrawn consents with a known patient expiring within [start, end]."""
        query = (
            self._candidate_query()
            .where(
                Submission.consent_given.is_(True),
                Submission.consent_withdrawn_at.is_(None),
                Submission.consent_expires_at >= ensure_utc(start),
                Submission.consent_expires_at <= ensure_utc(end),
                Submission.user_id.is_not(None),
            )
            .order_by(Submission.id)
        )
        return await self._fetch(query)

    async def find_auto_renewal_candidates(self, now: datetime, until: datetime) -> list[ConsentCandidate]:
        """Opted-in consents expiring between `now` and `until` inclusive."""
        query = (
            self._candidate_query()
            .where(
                Submission.auto_renew.is_(True),
                Submission.consent_given.is_(True),
                Submission.consent_withdrawn_at.is_(None),
                Submission.consent_expires_at >= ensure_utc(now),
                Submission.consent_expires_at <= ensure_utc(until),
                Submission.user_id.is_not(None),
            )
            .order_by(Submission.consent_expires_at, Submission.id)
        )
        return await self._fetch(query)

    async def get(self, record_id: int) -> ConsentCandidate | None:
        candidates = await self._fetch(self._candidate_query().where(Submission.id == record_id))
        return candidates[0] if candidates else None

    async def list_for_user(self, user_id: int) -> list[ConsentCandidate]:
        query = (
            self._candidate_query()
            .where(Submission.user_id == user_id, Submission.consent_given.is_(True))
            .order_by(Submission.created_at.desc(), Submission.id.desc())
        )
        return await self._fetch(query)

    async def consent_snapshots(self) -> list[ConsentSnapshot]:
        """Every given consent with its organization, for the admin statistics."""
        query = (
            select(
                Submission.id,
                Organization.id,
                Organization.name,
                Submission.consent_at,
                Submission.consent_expires_at,
                Submission.consent_withdrawn_at,
                Submission.auto_renew,
                Submission.renewed_at,
                FormTemplate.grace_period_days,
            )
            .join(FormTemplate, Submission.form_template_id == FormTemplate.id)
            .join(Organization, FormTemplate.organization_id == Organization.id)
            .where(Submission.consent_given.is_(True))
            .order_by(Submission.id)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = result.all()

        return [
            ConsentSnapshot(
                submission_id=submission_id,
                organization_id=organization_id,
                organization_name=organization_name,
                consent_at=ensure_utc(consent_at),
                consent_expires_at=ensure_utc(consent_expires_at),
                consent_withdrawn_at=ensure_utc(consent_withdrawn_at),
                auto_renew=bool(auto_renew),
                renewed_at=ensure_utc(renewed_at),
                grace_period_days=_grace_period_days(grace_period_days),
            )
            for (
                submission_id,
                organization_id,
                organization_name,
                consent_at,
                consent_expires_at,
                consent_withdrawn_at,
                auto_renew,
                renewed_at,
                grace_period_days,
            ) in rows
        ]

    async def list_activity(self, record_id: int) -> list[ActivityLogOut]:
        """Audit entries for one submission, oldest first."""
        query = (
            select(ActivityLog)
            .where(ActivityLog.submission_id == record_id)
            .order_by(ActivityLog.timestamp, ActivityLog.id)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            entries = result.scalars().all()
        return [
            ActivityLogOut(
                id=entry.id,
                action=entry.action,
                user_id=entry.user_id,
                submission_id=entry.submission_id,
                timestamp=ensure_utc(entry.timestamp),
                description=entry.description,
                details=json.loads(entry.details) if entry.details else None,
            )
            for entry in entries
        ]

    async def _execute_update(
        self, stmt, record_id: int, operation: str, activity: ActivityEvent | None = None
    ) -> bool:
        """Run one guarded UPDATE; the audit row is only written if it matched."""
        async with self.session_factory() as session:
            try:
                result = await session.execute(stmt.execution_options(synchronize_session=False))
                applied = result.rowcount == 1
                if applied and activity is not None:
                    record_activity(session, activity)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "consent_store: %s failed for submission %s: %s",
                    operation,
                    record_id,
                    exc,
                    extra={"submission_id": record_id},
                )
                raise PersistenceError(
                    f"Failed to {operation.replace('_', ' ')}", record_id=record_id, operation=operation
                ) from exc
        return applied

    async def apply_renewal(
        self,
        record_id: int,
        expected_renewal_count: int,
        new_expires_at: datetime,
        duration_months: int,
        renewed_at: datetime,
        renewal_history: list[RenewalHistoryEntry],
        activity: ActivityEvent | None = None,
    ) -> bool:
        """
        Persist a renewal as one UPDATE.

        The write only applies while the stored renewal_count still equals
        `expected_renewal_count` and the consent is not withdrawn, so two
        concurrent renewals of the same record cannot both succeed or lose
        each other's history entry. `activity`, if given, is committed in the
        same transaction.

        Returns:
            bool: True if the row was updated, False if it changed underneath us
        """
        stmt = (
            update(Submission)
            .where(
                Submission.id == record_id,
                Submission.renewal_count == expected_renewal_count,
                Submission.consent_withdrawn_at.is_(None),
            )
            .values(
                consent_expires_at=ensure_utc(new_expires_at),
                consent_duration_months=duration_months,
                renewed_at=ensure_utc(renewed_at),
                renewal_count=expected_renewal_count + 1,
                renewal_history=dump_renewal_history(renewal_history),
            )
        )
        return await self._execute_update(stmt, record_id, "apply_renewal", activity)

    async def withdraw(
        self, record_id: int, reason: str | None, now: datetime, activity: ActivityEvent | None = None
    ) -> bool:
        """Withdraw consent. Has no effect on an already-withdrawn record."""
        stmt = (
            update(Submission)
            .where(
                Submission.id == record_id,
                Submission.consent_given.is_(True),
                Submission.consent_withdrawn_at.is_(None),
            )
            .values(consent_withdrawn_at=ensure_utc(now), withdrawal_reason=reason, auto_renew=False)
        )
        return await self._execute_update(stmt, record_id, "withdraw_consent", activity)

    async def set_auto_renew(self, record_id: int, enabled: bool, activity: ActivityEvent | None = None) -> bool:
        stmt = (
            update(Submission)
            .where(Submission.id == record_id, Submission.consent_withdrawn_at.is_(None))
            .values(auto_renew=enabled)
        )
        return await self._execute_update(stmt, record_id, "set_auto_renew", activity)
