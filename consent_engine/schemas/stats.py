"""Admin-facing consent statistics."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ConsentSnapshot(BaseModel):
    """The columns needed to classify one given consent for reporting."""

    model_config = ConfigDict(frozen=True)

    submission_id: int
    organization_id: int
    organization_name: str
    consent_at: datetime | None
    consent_expires_at: datetime | None
    consent_withdrawn_at: datetime | None
    auto_renew: bool
    renewed_at: datetime | None
    grace_period_days: int


class ConsentStatsSummary(BaseModel):
    total_submissions: int = 0
    active_consents: int = 0
    expiring_in_7_days: int = 0
    expiring_in_30_days: int = 0
    grace_period_consents: int = 0
    expired_consents: int = 0
    withdrawn_consents: int = 0
    auto_renewal_enabled: int = 0
    # Percentages rounded to one decimal
    withdrawal_rate: float = 0.0
    auto_renewal_rate: float = 0.0


class ConsentActivityStats(BaseModel):
    window_days: int
    recent_renewals: int = 0
    recent_withdrawals: int = 0


class OrganizationConsentStats(BaseModel):
    organization_id: int
    organization_name: str
    total: int = 0
    active: int = 0
    expiring_soon: int = 0
    grace_period: int = 0
    expired: int = 0
    withdrawn: int = 0


class ConsentStatsOut(BaseModel):
    generated_at: datetime
    summary: ConsentStatsSummary
    activity: ConsentActivityStats
    organization_breakdown: list[OrganizationConsentStats]
