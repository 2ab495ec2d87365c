"""
Consent domain schemas.

The engine works on these models rather than on ORM rows so the calculators
and jobs stay independent of how the store persists a record.
"""

import enum
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class ConsentStatus(str, enum.Enum):
    """Derived consent state. Never persisted."""

    NOT_GIVEN = "NOT_GIVEN"
    WITHDRAWN = "WITHDRAWN"
    ACTIVE = "ACTIVE"
    GRACE_PERIOD = "GRACE_PERIOD"
    EXPIRED = "EXPIRED"


class RenewalUrgency(str, enum.Enum):
    """Ordinal renewal signal, lowest first."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(RenewalUrgency).index(self)

    @property
    def is_elevated(self) -> bool:
        return self is not RenewalUrgency.NONE


class RenewedBy(str, enum.Enum):
    PATIENT = "patient"
    AUTO = "auto"
    # Only found in legacy rows; the engine never writes it
    PROVIDER = "provider"


class RenewalHistoryEntry(BaseModel):
    """One immutable audit entry in a submission's renewal history."""

    # Rows written before the history format was normalised used camelCase keys
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    previous_expires_at: datetime = Field(validation_alias=AliasChoices("previous_expires_at", "previousExpiresAt"))
    new_expires_at: datetime = Field(validation_alias=AliasChoices("new_expires_at", "newExpiresAt"))
    renewed_by: RenewedBy = Field(validation_alias=AliasChoices("renewed_by", "renewedBy"))
    duration_months: int = Field(validation_alias=AliasChoices("duration_months", "durationMonths"))
    occurred_at: datetime = Field(validation_alias=AliasChoices("occurred_at", "renewedAt"))


class ConsentPolicy(BaseModel):
    """Consent policy owned by the form template. Durations are in months."""

    model_config = ConfigDict(frozen=True)

    default_consent_duration: int = Field(12, ge=1)
    min_consent_duration: int = Field(3, ge=1)
    max_consent_duration: int = Field(24, ge=1)
    grace_period_days: int = Field(30, ge=0)
    allow_auto_renewal: bool = True

    @model_validator(mode="after")
    def _check_bounds(self) -> "ConsentPolicy":
        if not (self.min_consent_duration <= self.default_consent_duration <= self.max_consent_duration):
            raise ValueError("consent durations must satisfy min <= default <= max")
        return self


class ConsentRecord(BaseModel):
    """The consent-bearing subset of a submission."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    consent_given: bool = False
    consent_at: datetime | None = None
    consent_expires_at: datetime | None = None
    consent_duration_months: int | None = None
    consent_withdrawn_at: datetime | None = None
    withdrawal_reason: str | None = None
    auto_renew: bool = False
    renewed_at: datetime | None = None
    renewal_count: int = 0
    renewal_history: list[RenewalHistoryEntry] = Field(default_factory=list)


class ConsentCandidate(BaseModel):
    """A consent record joined with everything a job needs to act on it."""

    record: ConsentRecord
    policy: ConsentPolicy
    user_id: int | None = None
    recipient_email: str | None = None
    recipient_name: str | None = None
    form_title: str = ""
    organization_id: int | None = None
    organization_name: str = ""
    # Set when the stored renewal history could not be parsed; `record.renewal_history` is then empty
    history_error: str | None = None


class ConsentStatusResult(BaseModel):
    status: ConsentStatus
    is_accessible: bool
    message: str
    days_remaining: int | None = None
    expires_at: datetime | None = None
    grace_period_ends_at: datetime | None = None
    can_renew: bool = False
    renewal_urgency: RenewalUrgency = RenewalUrgency.NONE


class StatusBadge(BaseModel):
    label: str
    color: str
    icon: str


# ============== Request / Response Bodies ==============


class RenewConsentRequest(BaseModel):
    duration_months: int | None = Field(default=None, ge=1)


class WithdrawConsentRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class AutoRenewUpdate(BaseModel):
    enabled: bool


class SubmissionConsentOut(BaseModel):
    submission_id: int
    form_title: str
    organization_name: str
    auto_renew: bool
    consent_duration_months: int | None
    renewal_count: int
    renewed_at: datetime | None
    renewal_history: list[RenewalHistoryEntry]
    withdrawn_at: datetime | None
    withdrawal_reason: str | None
    status: ConsentStatusResult
    badge: StatusBadge


class StatusCount(BaseModel):
    status: ConsentStatus
    count: int


class OrganizationConsentSummary(BaseModel):
    organization_id: int | None
    organization_name: str
    consent_statuses: list[StatusCount]
    earliest_expiry: datetime | None
    urgent_renewals: int
    total_submissions: int
    active_submissions: int
    withdrawn_submissions: int
    grace_period_submissions: int
    expired_submissions: int


class PatientConsentOverview(BaseModel):
    consents: list[OrganizationConsentSummary]
    total_organizations: int
    urgent_renewals: int
