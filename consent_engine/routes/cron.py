"""
Cron Routes

Scheduler-invoked consent jobs. Both endpoints accept GET (what hosted cron
services send) and POST, and require the shared bearer secret.
"""

from fastapi import APIRouter, Depends, Query

from consent_engine.routes.dependencies import get_auto_renewal_job, get_expiry_warning_job, verify_cron_secret
from consent_engine.schemas.jobs import AutoRenewalReport, ExpiryWarningReport
from consent_engine.services.auto_renewal_job import AutoRenewalJob
from consent_engine.services.expiry_warning_job import ExpiryWarningJob

router = APIRouter(prefix="/api/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.api_route(
    "/consent-expiry",
    methods=["GET", "POST"],
    response_model=ExpiryWarningReport,
    response_model_exclude_none=True,
)
async def run_expiry_warnings(
    dry_run: bool = Query(False, alias="dryRun"),
    job: ExpiryWarningJob = Depends(get_expiry_warning_job),
) -> ExpiryWarningReport:
    """
    Send staged consent expiry warnings.

    With `dryRun=true` nothing is sent or recorded and the per-record
    detail is included in the response.
    """
    return await job.run(dry_run=dry_run)


@router.api_route(
    "/consent-auto-renew",
    methods=["GET", "POST"],
    response_model=AutoRenewalReport,
    response_model_exclude_none=True,
)
async def run_auto_renewals(
    dry_run: bool = Query(False, alias="dryRun"),
    job: AutoRenewalJob = Depends(get_auto_renewal_job),
) -> AutoRenewalReport:
    """
    Renew opted-in consents expiring within the auto-renew threshold.
    """
    return await job.run(dry_run=dry_run)
