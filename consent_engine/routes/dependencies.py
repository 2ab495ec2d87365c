"""
Route dependencies: service providers and caller identification.

Providers are plain functions so tests can swap them through
`app.dependency_overrides`.
"""

import hmac
import logging

from fastapi import Depends, Header

from consent_engine.config import settings
from consent_engine.exceptions import AuthorizationError, ConfigurationError
from consent_engine.services.auto_renewal_job import AutoRenewalJob
from consent_engine.services.consent_service import ConsentService
from consent_engine.services.consent_store import ConsentStore
from consent_engine.services.email_service import email_service
from consent_engine.services.expiry_warning_job import ExpiryWarningJob
from consent_engine.services.notification_ledger import NotificationLedger

logger = logging.getLogger(__name__)


def get_consent_store() -> ConsentStore:
    return ConsentStore()


def get_notification_ledger() -> NotificationLedger:
    return NotificationLedger()


def get_notification_gateway():
    return email_service


def get_expiry_warning_job(
    store: ConsentStore = Depends(get_consent_store),
    ledger: NotificationLedger = Depends(get_notification_ledger),
    gateway=Depends(get_notification_gateway),
) -> ExpiryWarningJob:
    return ExpiryWarningJob(store=store, ledger=ledger, gateway=gateway)


def get_auto_renewal_job(
    store: ConsentStore = Depends(get_consent_store),
    ledger: NotificationLedger = Depends(get_notification_ledger),
    gateway=Depends(get_notification_gateway),
) -> AutoRenewalJob:
    return AutoRenewalJob(store=store, ledger=ledger, gateway=gateway)


def get_consent_service(
    store: ConsentStore = Depends(get_consent_store),
    ledger: NotificationLedger = Depends(get_notification_ledger),
    gateway=Depends(get_notification_gateway),
) -> ConsentService:
    return ConsentService(store=store, ledger=ledger, gateway=gateway)


def _check_bearer(authorization: str | None, secret: str | None, setting: str, not_configured: str) -> None:
    if not secret:
        logger.error("%s is not configured", setting.upper())
        raise ConfigurationError(not_configured, setting=setting)

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("Rejected %s request with missing or invalid credentials", setting.removesuffix("_secret"))
        raise AuthorizationError()


async def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """
    Require `Authorization: Bearer <cron_secret>` on scheduler endpoints.

    Raises:
        ConfigurationError: If the check is enforced but no secret is configured
        AuthorizationError: If the header is missing or does not match
    """
    if not settings.cron_auth_required:
        return
    _check_bearer(authorization, settings.cron_secret, "cron_secret", "Cron job not configured")


async def verify_admin_secret(authorization: str | None = Header(default=None)) -> None:
    """Require `Authorization: Bearer <admin_secret>` on admin endpoints, in every environment."""
    _check_bearer(authorization, settings.admin_secret, "admin_secret", "Admin API not configured")


async def get_current_patient_id(x_patient_id: str | None = Header(default=None)) -> int:
    """Patient id asserted by the upstream authentication layer."""
    if not x_patient_id:
        raise AuthorizationError("Patient identity required")
    try:
        return int(x_patient_id)
    except ValueError as e:
        raise AuthorizationError("Invalid patient identity") from e
