"""
In-process scheduling of the daily consent jobs.

`max_instances=1` keeps a slow run from overlapping the next trigger in this
process; overlapping runs from other processes are tolerated by the jobs
themselves.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from consent_engine.config import settings
from consent_engine.services.auto_renewal_job import AutoRenewalJob
from consent_engine.services.expiry_warning_job import ExpiryWarningJob

scheduler = AsyncIOScheduler(timezone=settings.scheduler_timezone)

logger = logging.getLogger(__name__)

EXPIRY_WARNING_JOB_ID = "consent_expiry_warnings"
AUTO_RENEWAL_JOB_ID = "consent_auto_renewals"


async def run_scheduled_expiry_warnings():
    report = await ExpiryWarningJob().run()
    logger.info(f"[Scheduler] Expiry warnings done: {report.sent} sent, {report.failed} failed")


async def run_scheduled_auto_renewals():
    report = await AutoRenewalJob().run()
    logger.info(f"[Scheduler] Auto-renewals done: {report.renewed} renewed, {report.failed} failed")


def install_consent_jobs(target: AsyncIOScheduler = scheduler) -> AsyncIOScheduler:
    """Register both consent jobs on `target` using the configured crontabs."""
    timezone = settings.scheduler_timezone
    target.add_job(
        run_scheduled_expiry_warnings,
        trigger=CronTrigger.from_crontab(settings.expiry_warning_cron, timezone=timezone),
        id=EXPIRY_WARNING_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    target.add_job(
        run_scheduled_auto_renewals,
        trigger=CronTrigger.from_crontab(settings.auto_renewal_cron, timezone=timezone),
        id=AUTO_RENEWAL_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"[Scheduler] Consent jobs scheduled (warnings: '{settings.expiry_warning_cron}', "
        f"auto-renew: '{settings.auto_renewal_cron}', tz: {timezone})"
    )
    return target
