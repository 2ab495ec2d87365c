"""
Patient Consent Routes

Consent status and lifecycle actions for the calling patient. A submission
that belongs to someone else is reported as not found.
"""

from fastapi import APIRouter, Depends

from consent_engine.routes.dependencies import get_consent_service, get_current_patient_id
from consent_engine.schemas.consent import (
    AutoRenewUpdate,
    PatientConsentOverview,
    RenewConsentRequest,
    SubmissionConsentOut,
    WithdrawConsentRequest,
)
from consent_engine.services.consent_service import ConsentService

router = APIRouter(prefix="/api/patient", tags=["Patient Consents"])


@router.get("/consents", response_model=PatientConsentOverview)
async def get_my_consents(
    patient_id: int = Depends(get_current_patient_id),
    service: ConsentService = Depends(get_consent_service),
) -> PatientConsentOverview:
    """
    Consent overview grouped by organization.
    """
    return await service.summarize_patient_consents(patient_id)


@router.get("/submissions", response_model=list[SubmissionConsentOut])
async def list_my_submissions(
    patient_id: int = Depends(get_current_patient_id),
    service: ConsentService = Depends(get_consent_service),
) -> list[SubmissionConsentOut]:
    """
    Every consented submission of the caller, newest first, with its status.
    """
    return await service.list_patient_consents(patient_id)


@router.get("/submissions/{submission_id}/consent", response_model=SubmissionConsentOut)
async def get_submission_consent(
    submission_id: int,
    patient_id: int = Depends(get_current_patient_id),
    service: ConsentService = Depends(get_consent_service),
) -> SubmissionConsentOut:
    return await service.get_consent_status(submission_id, user_id=patient_id)


@router.post("/submissions/{submission_id}/consent/renew", response_model=SubmissionConsentOut)
async def renew_submission_consent(
    submission_id: int,
    body: RenewConsentRequest | None = None,
    patient_id: int = Depends(get_current_patient_id),
    service: ConsentService = Depends(get_consent_service),
) -> SubmissionConsentOut:
    """
    Renew consent from its current expiry.

    Only allowed inside the renewal window or the grace period.
    """
    duration_months = body.duration_months if body else None
    return await service.renew_consent(submission_id, duration_months=duration_months, user_id=patient_id)


@router.post("/submissions/{submission_id}/consent/withdraw", response_model=SubmissionConsentOut)
async def withdraw_submission_consent(
    submission_id: int,
    body: WithdrawConsentRequest | None = None,
    patient_id: int = Depends(get_current_patient_id),
    service: ConsentService = Depends(get_consent_service),
) -> SubmissionConsentOut:
    """
    Withdraw consent. This cannot be undone.
    """
    reason = body.reason if body else None
    return await service.withdraw_consent(submission_id, reason=reason, user_id=patient_id)


@router.put("/submissions/{submission_id}/consent/auto-renew", response_model=SubmissionConsentOut)
async def update_auto_renew(
    submission_id: int,
    body: AutoRenewUpdate,
    patient_id: int = Depends(get_current_patient_id),
    service: ConsentService = Depends(get_consent_service),
) -> SubmissionConsentOut:
    return await service.set_auto_renew(submission_id, body.enabled, user_id=patient_id)
