"""
Consent Lifecycle Service

Patient-initiated consent actions: renew, withdraw, toggle auto-renewal,
and the read-side status views. All state checks go through the status
calculator so what a patient can do always matches what they are shown.
"""

import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta

from consent_engine.exceptions import InvalidOperationError, SubmissionNotFoundError
from consent_engine.schemas.consent import (
    ConsentCandidate,
    ConsentStatus,
    ConsentStatusResult,
    OrganizationConsentSummary,
    PatientConsentOverview,
    RenewalUrgency,
    RenewedBy,
    StatusCount,
    SubmissionConsentOut,
)
from consent_engine.services.consent_renewal import (
    append_renewal_entry,
    calculate_renewal_expiry,
    create_renewal_entry,
    resolve_renewal_duration,
    validate_renewal_duration,
)
from consent_engine.services.consent_status import compute_record_status, compute_status, get_status_badge
from consent_engine.schemas.stats import (
    ConsentActivityStats,
    ConsentStatsOut,
    ConsentStatsSummary,
    OrganizationConsentStats,
)
from consent_engine.services.consent_store import ConsentStore, require_readable_history
from consent_engine.services.email_service import email_service
from consent_engine.services.notification_ledger import CONSENT_RENEWED, CONSENT_WITHDRAWN, NotificationLedger
from consent_engine.utils.activity_log import auto_renew_activity, renewal_activity, withdrawal_activity
from consent_engine.utils.dates import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_URGENT = (RenewalUrgency.HIGH, RenewalUrgency.CRITICAL)

RECENT_ACTIVITY_DAYS = 30
EXPIRING_SOON_DAYS = 30
EXPIRING_THIS_WEEK_DAYS = 7


def _is_urgent(status: ConsentStatusResult) -> bool:
    return status.can_renew and status.renewal_urgency in _URGENT


def _to_out(candidate: ConsentCandidate, status: ConsentStatusResult) -> SubmissionConsentOut:
    record = candidate.record
    return SubmissionConsentOut(
        submission_id=record.id,
        form_title=candidate.form_title,
        organization_name=candidate.organization_name,
        auto_renew=record.auto_renew,
        consent_duration_months=record.consent_duration_months,
        renewal_count=record.renewal_count,
        renewed_at=record.renewed_at,
        renewal_history=record.renewal_history,
        withdrawn_at=record.consent_withdrawn_at,
        withdrawal_reason=record.withdrawal_reason,
        status=status,
        badge=get_status_badge(status),
    )


class ConsentService:
    def __init__(
        self,
        store: ConsentStore | None = None,
        ledger: NotificationLedger | None = None,
        gateway=None,
        clock=utcnow,
    ):
        self.store = store or ConsentStore()
        self.ledger = ledger or NotificationLedger()
        self.gateway = gateway or email_service
        self.clock = clock

    async def _load(self, record_id: int, user_id: int | None = None) -> ConsentCandidate:
        candidate = await self.store.get(record_id)
        # Someone else's submission is reported exactly like a missing one
        if candidate is None or (user_id is not None and candidate.user_id != user_id):
            raise SubmissionNotFoundError(record_id)
        return candidate

    async def get_consent_status(self, record_id: int, user_id: int | None = None) -> SubmissionConsentOut:
        candidate = await self._load(record_id, user_id)
        status = compute_record_status(candidate.record, candidate.policy, self.clock())
        return _to_out(candidate, status)

    async def renew_consent(
        self,
        record_id: int,
        duration_months: int | None = None,
        renewed_by: RenewedBy | str = RenewedBy.PATIENT,
        user_id: int | None = None,
    ) -> SubmissionConsentOut:
        """
        Renew a consent from its current expiry.

        Args:
            record_id: Submission ID
            duration_months: Requested duration; defaults to the record's own, then the template's
            renewed_by: Who initiated the renewal
            user_id: When set, the submission must belong to this patient

        Returns:
            SubmissionConsentOut: The consent after renewal

        Raises:
            SubmissionNotFoundError: If the submission does not exist or is not the caller's
            DurationOutOfRangeError: If the duration is outside the template's bounds
            InvalidOperationError: If the consent cannot be renewed right now
            UnreadableRecordError: If the stored renewal history cannot be parsed
        """
        candidate = await self._load(record_id, user_id)
        record, policy = candidate.record, candidate.policy
        now = self.clock()

        months = resolve_renewal_duration(duration_months, record.consent_duration_months, policy)
        validate_renewal_duration(months, policy)

        status = compute_record_status(record, policy, now)
        if status.status is ConsentStatus.WITHDRAWN:
            raise InvalidOperationError("Cannot renew withdrawn consent")
        if status.status is ConsentStatus.NOT_GIVEN:
            raise InvalidOperationError("Cannot renew consent that was never given")
        if status.status is ConsentStatus.EXPIRED:
            raise InvalidOperationError("Consent has expired; a new submission is required")
        if record.consent_expires_at is None:
            raise InvalidOperationError("Consent has no expiry to renew")
        if not status.can_renew:
            raise InvalidOperationError(
                "Consent is not yet within the renewal window",
                details={"days_remaining": status.days_remaining},
            )
        require_readable_history(candidate)

        new_expires_at = calculate_renewal_expiry(record.consent_expires_at, months)
        entry = create_renewal_entry(
            previous_expires_at=record.consent_expires_at,
            new_expires_at=new_expires_at,
            renewed_by=renewed_by,
            duration_months=months,
            now=now,
        )
        applied = await self.store.apply_renewal(
            record.id,
            expected_renewal_count=record.renewal_count,
            new_expires_at=new_expires_at,
            duration_months=months,
            renewed_at=now,
            renewal_history=append_renewal_entry(record.renewal_history, entry),
            activity=renewal_activity(candidate, entry),
        )
        if not applied:
            raise InvalidOperationError("Consent was modified by another request; please retry")

        logger.info(
            "Consent %s renewed for %d months by %s (until %s)",
            record.id,
            months,
            RenewedBy(renewed_by).value,
            new_expires_at.isoformat(),
            extra={"submission_id": record.id},
        )

        updated = record.model_copy(
            update={
                "consent_expires_at": new_expires_at,
                "consent_duration_months": months,
                "renewed_at": now,
                "renewal_count": record.renewal_count + 1,
                "renewal_history": [*record.renewal_history, entry],
            }
        )
        candidate = candidate.model_copy(update={"record": updated})
        await self._send_renewed(candidate, new_expires_at, months, RenewedBy(renewed_by) is RenewedBy.AUTO)
        return _to_out(candidate, compute_record_status(updated, policy, now))

    async def withdraw_consent(
        self, record_id: int, reason: str | None = None, user_id: int | None = None
    ) -> SubmissionConsentOut:
        """Withdraw consent. Withdrawal is terminal."""
        candidate = await self._load(record_id, user_id)
        record = candidate.record

        if not record.consent_given:
            raise InvalidOperationError("No consent to withdraw")
        if record.consent_withdrawn_at is not None:
            raise InvalidOperationError("Consent already withdrawn")

        now = self.clock()
        activity = withdrawal_activity(candidate, reason, now)
        if not await self.store.withdraw(record.id, reason, now, activity=activity):
            raise InvalidOperationError("Consent already withdrawn")

        logger.info("Consent %s withdrawn", record.id, extra={"submission_id": record.id})

        updated = record.model_copy(
            update={"consent_withdrawn_at": ensure_utc(now), "withdrawal_reason": reason, "auto_renew": False}
        )
        candidate = candidate.model_copy(update={"record": updated})
        await self._send_withdrawn(candidate, now)
        return _to_out(candidate, compute_record_status(updated, candidate.policy, now))

    async def set_auto_renew(self, record_id: int, enabled: bool, user_id: int | None = None) -> SubmissionConsentOut:
        candidate = await self._load(record_id, user_id)
        record = candidate.record

        if record.consent_withdrawn_at is not None:
            raise InvalidOperationError("Cannot change auto-renewal on withdrawn consent")
        if enabled and not candidate.policy.allow_auto_renewal:
            raise InvalidOperationError("This form does not allow automatic renewal")

        activity = auto_renew_activity(candidate, enabled, self.clock())
        if not await self.store.set_auto_renew(record.id, enabled, activity=activity):
            raise InvalidOperationError("Cannot change auto-renewal on withdrawn consent")

        logger.info("Auto-renew for consent %s set to %s", record.id, enabled, extra={"submission_id": record.id})
        candidate = candidate.model_copy(update={"record": record.model_copy(update={"auto_renew": enabled})})
        return _to_out(candidate, compute_record_status(candidate.record, candidate.policy, self.clock()))

    async def list_patient_consents(self, user_id: int) -> list[SubmissionConsentOut]:
        now = self.clock()
        return [
            _to_out(c, compute_record_status(c.record, c.policy, now)) for c in await self.store.list_for_user(user_id)
        ]

    async def summarize_patient_consents(self, user_id: int) -> PatientConsentOverview:
        """Group a patient's consents by organization."""
        now = self.clock()
        groups: dict[int | None, list[tuple[ConsentCandidate, ConsentStatusResult]]] = defaultdict(list)
        for candidate in await self.store.list_for_user(user_id):
            groups[candidate.organization_id].append(
                (candidate, compute_record_status(candidate.record, candidate.policy, now))
            )

        summaries: list[tuple[datetime | None, OrganizationConsentSummary]] = []
        for organization_id, items in groups.items():
            counts = Counter(status.status for _, status in items)
            accessible_expiries = [
                status.expires_at for _, status in items if status.is_accessible and status.expires_at is not None
            ]
            consent_times = [c.record.consent_at for c, _ in items if c.record.consent_at is not None]
            summaries.append(
                (
                    max(consent_times) if consent_times else None,
                    OrganizationConsentSummary(
                        organization_id=organization_id,
                        organization_name=items[0][0].organization_name,
                        consent_statuses=[
                            StatusCount(status=status, count=counts[status]) for status in ConsentStatus if counts[status]
                        ],
                        earliest_expiry=min(accessible_expiries) if accessible_expiries else None,
                        urgent_renewals=sum(1 for _, status in items if _is_urgent(status)),
                        total_submissions=len(items),
                        active_submissions=counts[ConsentStatus.ACTIVE],
                        withdrawn_submissions=counts[ConsentStatus.WITHDRAWN],
                        grace_period_submissions=counts[ConsentStatus.GRACE_PERIOD],
                        expired_submissions=counts[ConsentStatus.EXPIRED],
                    ),
                )
            )

        # Most recently consented organization first
        summaries.sort(key=lambda pair: pair[0] or datetime.min.replace(tzinfo=now.tzinfo), reverse=True)
        consents = [summary for _, summary in summaries]
        return PatientConsentOverview(
            consents=consents,
            total_organizations=len(consents),
            urgent_renewals=sum(s.urgent_renewals for s in consents),
        )

    async def consent_stats(self) -> ConsentStatsOut:
        """
        Organization-wide consent statistics for administrators.

        Each given consent is classified with the same status calculator the
        patient views use, so "active" here means accessible and unexpired.
        """
        now = self.clock()
        recent_since = now - timedelta(days=RECENT_ACTIVITY_DAYS)
        summary = ConsentStatsSummary()
        activity = ConsentActivityStats(window_days=RECENT_ACTIVITY_DAYS)
        organizations: dict[int, OrganizationConsentStats] = {}
        accessible = 0

        for snapshot in await self.store.consent_snapshots():
            status = compute_status(
                True,
                snapshot.consent_at,
                snapshot.consent_expires_at,
                snapshot.consent_withdrawn_at,
                snapshot.grace_period_days,
                now,
            )
            organization = organizations.get(snapshot.organization_id)
            if organization is None:
                organization = OrganizationConsentStats(
                    organization_id=snapshot.organization_id, organization_name=snapshot.organization_name
                )
                organizations[snapshot.organization_id] = organization

            summary.total_submissions += 1
            organization.total += 1

            if status.status is ConsentStatus.ACTIVE:
                summary.active_consents += 1
                organization.active += 1
                if status.days_remaining is not None and status.days_remaining <= EXPIRING_SOON_DAYS:
                    summary.expiring_in_30_days += 1
                    organization.expiring_soon += 1
                    if status.days_remaining <= EXPIRING_THIS_WEEK_DAYS:
                        summary.expiring_in_7_days += 1
            elif status.status is ConsentStatus.GRACE_PERIOD:
                summary.grace_period_consents += 1
                organization.grace_period += 1
            elif status.status is ConsentStatus.EXPIRED:
                summary.expired_consents += 1
                organization.expired += 1
            elif status.status is ConsentStatus.WITHDRAWN:
                summary.withdrawn_consents += 1
                organization.withdrawn += 1

            if status.is_accessible:
                accessible += 1
                if snapshot.auto_renew:
                    summary.auto_renewal_enabled += 1

            if snapshot.renewed_at is not None and snapshot.renewed_at >= recent_since:
                activity.recent_renewals += 1
            if snapshot.consent_withdrawn_at is not None and snapshot.consent_withdrawn_at >= recent_since:
                activity.recent_withdrawals += 1

        if summary.total_submissions:
            summary.withdrawal_rate = round(summary.withdrawn_consents / summary.total_submissions * 100, 1)
        if accessible:
            summary.auto_renewal_rate = round(summary.auto_renewal_enabled / accessible * 100, 1)

        breakdown = sorted(organizations.values(), key=lambda o: (-o.total, o.organization_name))
        return ConsentStatsOut(
            generated_at=now, summary=summary, activity=activity, organization_breakdown=breakdown
        )

    async def _send_renewed(
        self, candidate: ConsentCandidate, new_expires_at: datetime, duration_months: int, is_auto_renewal: bool
    ) -> None:
        if not candidate.recipient_email:
            return
        try:
            result = await self.gateway.send_consent_renewed_email(
                patient_name=candidate.recipient_name or "Patient",
                patient_email=candidate.recipient_email,
                organization_name=candidate.organization_name,
                form_title=candidate.form_title,
                new_expires_at=new_expires_at,
                duration_months=duration_months,
                is_auto_renewal=is_auto_renewal,
            )
            if result.success:
                await self.ledger.record(
                    candidate.record.id,
                    CONSENT_RENEWED,
                    recipient_email=candidate.recipient_email,
                    subject=result.subject,
                    renewal_cycle=candidate.record.renewal_count,
                    message_id=result.message_id,
                )
            else:
                logger.warning("Renewal confirmation for %s not delivered: %s", candidate.record.id, result.error)
        except Exception:
            logger.exception("Failed to send renewal confirmation for %s", candidate.record.id)

    async def _send_withdrawn(self, candidate: ConsentCandidate, withdrawn_at: datetime) -> None:
        if not candidate.recipient_email:
            return
        try:
            result = await self.gateway.send_consent_withdrawn_email(
                patient_name=candidate.recipient_name or "Patient",
                patient_email=candidate.recipient_email,
                organization_name=candidate.organization_name,
                form_title=candidate.form_title,
                withdrawn_at=withdrawn_at,
            )
            if result.success:
                await self.ledger.record(
                    candidate.record.id,
                    CONSENT_WITHDRAWN,
                    recipient_email=candidate.recipient_email,
                    subject=result.subject,
                    renewal_cycle=candidate.record.renewal_count,
                    message_id=result.message_id,
                )
            else:
                logger.warning("Withdrawal confirmation for %s not delivered: %s", candidate.record.id, result.error)
        except Exception:
            logger.exception("Failed to send withdrawal confirmation for %s", candidate.record.id)
