"""
Consent Expiry Warning Job

Sends staged reminder emails for consents expiring in exactly 30, 14, 7 and
1 days (by calendar day). Safe to re-run: a (submission, threshold) warning
is only sent while the ledger has no entry for it in the current consent
window, and the entry is only written after a successful send.
"""

import logging
from collections import Counter
from datetime import datetime

from consent_engine.config import settings
from consent_engine.exceptions import ConsentEngineError, ErrorCode, PersistenceError, TransientDeliveryError
from consent_engine.schemas.consent import ConsentCandidate
from consent_engine.schemas.jobs import ExpiryWarningReport, NotificationOutcome, ThresholdSummary
from consent_engine.services.batch import DEFERRED, JobBudget, run_bounded, start_job_run
from consent_engine.services.consent_store import ConsentStore
from consent_engine.services.email_service import email_service
from consent_engine.services.notification_ledger import NotificationLedger, expiry_notification_type
from consent_engine.utils.dates import day_window, ensure_utc, utcnow

logger = logging.getLogger(__name__)


class ExpiryWarningJob:
    name = "consent_expiry"

    def __init__(
        self,
        store: ConsentStore | None = None,
        ledger: NotificationLedger | None = None,
        gateway=None,
        thresholds: list[int] | None = None,
        timeout_seconds: float | None = None,
        concurrency: int | None = None,
        app_url: str | None = None,
    ):
        self.store = store or ConsentStore()
        self.ledger = ledger or NotificationLedger()
        self.gateway = gateway or email_service
        self.thresholds = thresholds or settings.expiry_warning_days
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.job_timeout_seconds
        self.concurrency = concurrency or settings.job_concurrency
        self.app_url = (app_url or settings.app_url).rstrip("/")

    def renewal_url(self, submission_id: int) -> str:
        return f"{self.app_url}/patient/submissions/{submission_id}"

    async def run(self, dry_run: bool = False, now: datetime | None = None) -> ExpiryWarningReport:
        """
        Run one pass over every warning threshold.

        Args:
            dry_run: Select candidates and check the ledger, but send nothing and write nothing
            now: Evaluation time (defaults to the current time)

        Returns:
            ExpiryWarningReport with per-threshold counts; per-record detail only for dry runs
        """
        start_job_run(self.name)
        now = ensure_utc(now) if now else utcnow()
        budget = JobBudget(self.timeout_seconds)
        report = ExpiryWarningReport(dry_run=dry_run)
        outcomes: list[NotificationOutcome] = []

        logger.info("Starting consent expiry notification job (dry_run: %s)", dry_run, extra={"job": self.name})

        for threshold in self.thresholds:
            if budget.exhausted:
                report.timed_out = True
                logger.warning("Time budget exhausted before the %d-day threshold", threshold)
                break

            summary = ThresholdSummary(threshold_days=threshold)
            report.thresholds.append(summary)

            window_start, window_end = day_window(now, threshold)
            candidates = [
                c for c in await self.store.find_expiring_between(window_start, window_end) if c.recipient_email
            ]
            summary.candidates = len(candidates)
            logger.info(
                "Found %d submissions expiring in ~%d days",
                len(candidates),
                threshold,
                extra={"job": self.name, "threshold_days": threshold},
            )

            results = await run_bounded(
                candidates,
                lambda candidate, threshold=threshold: self._process(candidate, threshold, dry_run),
                self.concurrency,
                budget,
            )

            for result in results:
                if result is DEFERRED:
                    report.deferred += 1
                    report.timed_out = True
                elif result is None:
                    summary.skipped += 1
                else:
                    outcomes.append(result)
                    if result.sent:
                        summary.sent += 1
                    elif result.error:
                        summary.failed += 1

        report.processed = len(outcomes)
        report.sent = sum(s.sent for s in report.thresholds)
        report.failed = sum(s.failed for s in report.thresholds)
        report.skipped = sum(s.skipped for s in report.thresholds)
        report.errors_by_code = dict(Counter(o.error_code for o in outcomes if o.error_code))
        if dry_run:
            report.notifications = outcomes

        logger.info(
            "Consent expiry job complete. Sent: %d, Failed: %d, Skipped: %d, Deferred: %d, DryRun: %d",
            report.sent,
            report.failed,
            report.skipped,
            report.deferred,
            len(outcomes) if dry_run else 0,
            extra={"job": self.name, "dry_run": dry_run},
        )
        return report

    async def _process(self, candidate: ConsentCandidate, threshold: int, dry_run: bool) -> NotificationOutcome | None:
        """Handle one record. Returns None when it was skipped; never raises."""
        record = candidate.record
        notification_type = expiry_notification_type(threshold)
        outcome = NotificationOutcome(
            submission_id=record.id,
            patient_email=candidate.recipient_email,
            days_remaining=threshold,
            notification_type=notification_type,
        )

        try:
            if await self.ledger.has_entry(record.id, notification_type, record.renewal_count):
                logger.info(
                    "Skipping %s - %d-day notification already sent",
                    record.id,
                    threshold,
                    extra={"submission_id": record.id, "threshold_days": threshold},
                )
                return None

            if dry_run:
                logger.info(
                    "[DryRun] Would send %d-day warning to %s for submission %s",
                    threshold,
                    candidate.recipient_email,
                    record.id,
                )
                return outcome

            result = await self.gateway.send_consent_expiry_email(
                patient_name=candidate.recipient_name or "Patient",
                patient_email=candidate.recipient_email,
                organization_name=candidate.organization_name,
                form_title=candidate.form_title,
                expires_at=record.consent_expires_at,
                days_remaining=threshold,
                renewal_url=self.renewal_url(record.id),
            )
            if not result.success:
                # No ledger entry: the next run retries this warning
                raise TransientDeliveryError(result.error or "Unknown error", record_id=record.id)
        except ConsentEngineError as exc:
            logger.error(
                "Failed to process %d-day warning for %s: %s",
                threshold,
                record.id,
                exc.message,
                extra={"submission_id": record.id, "error_code": exc.error_code.value},
            )
            outcome.error = exc.message
            outcome.error_code = exc.error_code.value
            return outcome
        except Exception as exc:
            logger.exception("Unexpected error processing %d-day warning for %s", threshold, record.id)
            outcome.error = str(exc) or type(exc).__name__
            outcome.error_code = ErrorCode.INTERNAL_ERROR.value
            return outcome

        outcome.sent = True
        try:
            await self.ledger.record(
                record.id,
                notification_type,
                recipient_email=candidate.recipient_email,
                subject=result.subject,
                renewal_cycle=record.renewal_count,
                message_id=result.message_id,
            )
        except PersistenceError as exc:
            logger.error("Warning sent to %s but not recorded: %s", record.id, exc.message)
            outcome.error = f"Sent but not recorded: {exc.message}"
            outcome.error_code = exc.error_code.value
        return outcome
