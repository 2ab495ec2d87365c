"""
Admin Routes

Read-only reporting across all organizations. Guarded by the admin bearer
secret rather than a patient identity.
"""

from fastapi import APIRouter, Depends

from consent_engine.routes.dependencies import get_consent_service, verify_admin_secret
from consent_engine.schemas.stats import ConsentStatsOut
from consent_engine.services.consent_service import ConsentService

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(verify_admin_secret)])


@router.get("/consent-stats", response_model=ConsentStatsOut)
async def get_consent_stats(service: ConsentService = Depends(get_consent_service)) -> ConsentStatsOut:
    """
    Consent status counts, 30-day renewal/withdrawal activity and a
    per-organization breakdown (largest first).
    """
    return await service.consent_stats()
