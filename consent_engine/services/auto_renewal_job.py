"""
Consent Auto-Renewal Job

Renews opted-in consents that expire within the auto-renew threshold.

Re-running the job cannot renew a record twice: a renewal moves the expiry
at least one month forward, out of the [now, now + threshold] query window,
and the write itself is a compare-and-set on renewal_count.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta

from consent_engine.config import settings
from consent_engine.exceptions import ConsentEngineError, ErrorCode
from consent_engine.schemas.consent import ConsentCandidate, RenewedBy
from consent_engine.schemas.jobs import AutoRenewalReport, RenewalOutcome
from consent_engine.services.batch import DEFERRED, JobBudget, run_bounded, start_job_run
from consent_engine.services.consent_renewal import (
    append_renewal_entry,
    calculate_renewal_expiry,
    create_renewal_entry,
    resolve_renewal_duration,
)
from consent_engine.services.consent_store import ConsentStore, require_readable_history
from consent_engine.services.email_service import email_service
from consent_engine.services.notification_ledger import AUTO_RENEWAL, NotificationLedger
from consent_engine.utils.activity_log import renewal_activity
from consent_engine.utils.dates import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class AutoRenewalJob:
    name = "consent_auto_renew"

    def __init__(
        self,
        store: ConsentStore | None = None,
        ledger: NotificationLedger | None = None,
        gateway=None,
        threshold_days: int | None = None,
        timeout_seconds: float | None = None,
        concurrency: int | None = None,
    ):
        self.store = store or ConsentStore()
        self.ledger = ledger or NotificationLedger()
        self.gateway = gateway or email_service
        self.threshold_days = threshold_days if threshold_days is not None else settings.auto_renew_threshold_days
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.job_timeout_seconds
        self.concurrency = concurrency or settings.job_concurrency

    async def run(self, dry_run: bool = False, now: datetime | None = None) -> AutoRenewalReport:
        """
        Renew every eligible consent once.

        Args:
            dry_run: Compute the renewals without persisting or notifying
            now: Evaluation time (defaults to the current time)

        Returns:
            AutoRenewalReport; per-record detail only for dry runs
        """
        start_job_run(self.name)
        now = ensure_utc(now) if now else utcnow()
        budget = JobBudget(self.timeout_seconds)
        report = AutoRenewalReport(dry_run=dry_run)

        logger.info("Starting consent auto-renewal job (dry_run: %s)", dry_run, extra={"job": self.name})

        candidates = await self.store.find_auto_renewal_candidates(now, now + timedelta(days=self.threshold_days))
        logger.info("Found %d submissions eligible for auto-renewal", len(candidates), extra={"job": self.name})

        results = await run_bounded(
            candidates,
            lambda candidate: self._process(candidate, now, dry_run),
            self.concurrency,
            budget,
        )

        outcomes: list[RenewalOutcome] = []
        for result in results:
            if result is DEFERRED:
                report.deferred += 1
                report.timed_out = True
            elif result is None:
                report.skipped += 1
            else:
                outcomes.append(result)

        report.processed = len(outcomes)
        report.renewed = sum(1 for o in outcomes if o.renewed)
        report.failed = sum(1 for o in outcomes if o.error)
        report.errors_by_code = dict(Counter(o.error_code for o in outcomes if o.error_code))
        if dry_run:
            report.renewals = outcomes

        logger.info(
            "Auto-renewal job complete. Renewed: %d, Failed: %d, Skipped: %d, Deferred: %d, DryRun: %d",
            report.renewed,
            report.failed,
            report.skipped,
            report.deferred,
            len(outcomes) if dry_run else 0,
            extra={"job": self.name, "dry_run": dry_run},
        )
        return report

    async def _process(self, candidate: ConsentCandidate, now: datetime, dry_run: bool) -> RenewalOutcome | None:
        """Renew one record. Returns None when it was skipped; never raises."""
        record = candidate.record

        if not candidate.policy.allow_auto_renewal:
            logger.info(
                "Skipping %s - template no longer allows auto-renewal",
                record.id,
                extra={"submission_id": record.id},
            )
            return None

        duration_months = resolve_renewal_duration(None, record.consent_duration_months, candidate.policy)
        outcome = RenewalOutcome(
            submission_id=record.id,
            patient_email=candidate.recipient_email,
            previous_expires_at=record.consent_expires_at,
            duration_months=duration_months,
        )

        try:
            require_readable_history(candidate)
            new_expires_at = calculate_renewal_expiry(record.consent_expires_at, duration_months)
            outcome.new_expires_at = new_expires_at

            if dry_run:
                logger.info(
                    "[DryRun] Would auto-renew %s for %d months (until %s)",
                    record.id,
                    duration_months,
                    new_expires_at.isoformat(),
                )
                return outcome

            entry = create_renewal_entry(
                previous_expires_at=record.consent_expires_at,
                new_expires_at=new_expires_at,
                renewed_by=RenewedBy.AUTO,
                duration_months=duration_months,
                now=now,
            )
            applied = await self.store.apply_renewal(
                record.id,
                expected_renewal_count=record.renewal_count,
                new_expires_at=new_expires_at,
                duration_months=duration_months,
                renewed_at=now,
                renewal_history=append_renewal_entry(record.renewal_history, entry),
                activity=renewal_activity(candidate, entry),
            )
        except ConsentEngineError as exc:
            logger.error(
                "Failed to auto-renew %s: %s",
                record.id,
                exc.message,
                extra={"submission_id": record.id, "error_code": exc.error_code.value},
            )
            outcome.error = exc.message
            outcome.error_code = exc.error_code.value
            return outcome
        except Exception as exc:
            logger.exception("Unexpected error auto-renewing %s", record.id)
            outcome.error = str(exc) or type(exc).__name__
            outcome.error_code = ErrorCode.INTERNAL_ERROR.value
            return outcome

        if not applied:
            logger.info(
                "Skipping %s - record changed since it was selected",
                record.id,
                extra={"submission_id": record.id},
            )
            return None

        outcome.renewed = True
        logger.info(
            "Auto-renewed %s for %d months (until %s)",
            record.id,
            duration_months,
            new_expires_at.isoformat(),
            extra={"submission_id": record.id},
        )
        outcome.notification_sent = await self._notify(candidate, new_expires_at, duration_months)
        return outcome

    async def _notify(self, candidate: ConsentCandidate, new_expires_at: datetime, duration_months: int) -> bool:
        """Best-effort confirmation. The renewal stands whether or not this succeeds."""
        record = candidate.record
        if not candidate.recipient_email:
            return False

        try:
            result = await self.gateway.send_consent_renewed_email(
                patient_name=candidate.recipient_name or "Patient",
                patient_email=candidate.recipient_email,
                organization_name=candidate.organization_name,
                form_title=candidate.form_title,
                new_expires_at=new_expires_at,
                duration_months=duration_months,
                is_auto_renewal=True,
            )
            if not result.success:
                logger.warning("Renewal confirmation for %s not delivered: %s", record.id, result.error)
                return False

            await self.ledger.record(
                record.id,
                AUTO_RENEWAL,
                recipient_email=candidate.recipient_email,
                subject=result.subject,
                renewal_cycle=record.renewal_count + 1,
                message_id=result.message_id,
            )
        except Exception:
            logger.exception("Failed to send renewal confirmation for %s", record.id)
            return False
        return True
