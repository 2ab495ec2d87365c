"""
Tests for the consent status calculator
"""

from datetime import timedelta

import pytest

from consent_engine.schemas.consent import ConsentPolicy, ConsentStatus, ConsentStatusResult, RenewalUrgency
from consent_engine.services.consent_renewal import calculate_consent_expiry
from consent_engine.services.consent_status import (
    compute_record_status,
    compute_status,
    get_status_badge,
    urgency_for_days,
)
from utils.fakes import make_candidate, utc

GIVEN_AT = utc(2025, 1, 1)
EXPIRES_AT = utc(2025, 7, 1)


def status_at(now, expires_at=EXPIRES_AT, withdrawn_at=None, grace_period_days=30, consent_given=True):
    return compute_status(
        consent_given=consent_given,
        consent_at=GIVEN_AT if consent_given else None,
        consent_expires_at=expires_at,
        consent_withdrawn_at=withdrawn_at,
        grace_period_days=grace_period_days,
        now=now,
    )


class TestNotGivenAndWithdrawn:
    def test_never_given(self):
        result = status_at(GIVEN_AT, consent_given=False)

        assert result.status == ConsentStatus.NOT_GIVEN
        assert result.is_accessible is False
        assert result.can_renew is False

    def test_given_flag_without_timestamp_is_not_given(self):
        result = compute_status(True, None, EXPIRES_AT, None, 30, GIVEN_AT)

        assert result.status == ConsentStatus.NOT_GIVEN

    @pytest.mark.parametrize(
        "now",
        [utc(2025, 2, 1), utc(2025, 6, 30), utc(2025, 7, 15), utc(2026, 1, 1)],
    )
    def test_withdrawn_takes_precedence_over_timeline(self, now):
        """Withdrawal wins even while the expiry is still in the future"""
        result = status_at(now, withdrawn_at=utc(2025, 1, 15))

        assert result.status == ConsentStatus.WITHDRAWN
        assert result.is_accessible is False
        assert result.can_renew is False
        assert result.message == "Consent has been withdrawn"

    def test_withdrawn_without_expiry(self):
        result = status_at(utc(2025, 2, 1), expires_at=None, withdrawn_at=utc(2025, 1, 15))

        assert result.status == ConsentStatus.WITHDRAWN


class TestNoExpiry:
    def test_missing_expiry_degrades_to_active(self):
        result = status_at(utc(2030, 1, 1), expires_at=None)

        assert result.status == ConsentStatus.ACTIVE
        assert result.is_accessible is True
        assert result.days_remaining is None
        assert result.can_renew is False
        assert result.renewal_urgency == RenewalUrgency.NONE


class TestGraceBoundaries:
    @pytest.mark.parametrize("grace", [1, 7, 30, 90])
    def test_at_expiry_with_grace_is_grace_period(self, grace):
        result = status_at(EXPIRES_AT, grace_period_days=grace)

        assert result.status == ConsentStatus.GRACE_PERIOD
        assert result.is_accessible is True
        assert result.can_renew is True
        assert result.renewal_urgency == RenewalUrgency.CRITICAL
        assert result.days_remaining == 0

    def test_at_expiry_without_grace_is_expired(self):
        result = status_at(EXPIRES_AT, grace_period_days=0)

        assert result.status == ConsentStatus.EXPIRED
        assert result.is_accessible is False

    @pytest.mark.parametrize("grace", [0, 1, 30])
    def test_one_second_after_grace_is_expired(self, grace):
        now = EXPIRES_AT + timedelta(days=grace, seconds=1)
        result = status_at(now, grace_period_days=grace)

        assert result.status == ConsentStatus.EXPIRED
        assert result.is_accessible is False
        assert result.can_renew is False
        assert result.renewal_urgency == RenewalUrgency.CRITICAL

    def test_grace_end_is_reported(self):
        result = status_at(utc(2025, 7, 10))

        assert result.grace_period_ends_at == utc(2025, 7, 31)
        assert result.message == "Consent expired, grace period ends in 21 days"

    def test_none_grace_uses_default(self):
        result = status_at(utc(2025, 7, 20), grace_period_days=None)

        assert result.status == ConsentStatus.GRACE_PERIOD

    def test_negative_grace_rejected(self):
        with pytest.raises(ValueError):
            status_at(EXPIRES_AT, grace_period_days=-1)


class TestUrgency:
    @pytest.mark.parametrize(
        ("days", "urgency"),
        [
            (60, RenewalUrgency.NONE),
            (31, RenewalUrgency.NONE),
            (30, RenewalUrgency.LOW),
            (15, RenewalUrgency.LOW),
            (14, RenewalUrgency.MEDIUM),
            (8, RenewalUrgency.MEDIUM),
            (7, RenewalUrgency.HIGH),
            (1, RenewalUrgency.HIGH),
        ],
    )
    def test_urgency_levels(self, days, urgency):
        assert urgency_for_days(days) == urgency

        result = status_at(EXPIRES_AT - timedelta(days=days))
        assert result.status == ConsentStatus.ACTIVE
        assert result.days_remaining == days
        assert result.renewal_urgency == urgency
        assert result.can_renew is urgency.is_elevated

    def test_partial_days_round_up(self):
        result = status_at(EXPIRES_AT - timedelta(days=6, hours=1))

        assert result.days_remaining == 7

    def test_urgency_ordering(self):
        ranks = [u.rank for u in RenewalUrgency]
        assert ranks == sorted(ranks)
        assert RenewalUrgency.CRITICAL.rank > RenewalUrgency.HIGH.rank

    def test_messages(self):
        assert status_at(EXPIRES_AT - timedelta(days=5)).message == "Consent expires in 5 days"
        assert status_at(EXPIRES_AT - timedelta(days=1)).message == "Consent expires in 1 day"
        assert status_at(utc(2025, 2, 1)).message == "Consent is active until 1 Jul 2025"


class TestSixMonthScenario:
    """Consent given on Jan 1 for six months with a 30-day grace period.

    Six calendar months lands on Jul 1, which is day 181 of 2025.
    """

    @pytest.fixture
    def expires_at(self):
        return calculate_consent_expiry(GIVEN_AT, 6)

    def test_expiry_date(self, expires_at):
        assert expires_at == utc(2025, 7, 1)
        assert (expires_at - GIVEN_AT).days == 181

    def test_day_179_active(self, expires_at):
        result = status_at(GIVEN_AT + timedelta(days=179), expires_at=expires_at)

        assert result.status == ConsentStatus.ACTIVE
        assert result.days_remaining == 2

    def test_day_after_expiry_in_grace(self, expires_at):
        result = status_at(expires_at + timedelta(days=1), expires_at=expires_at)

        assert result.status == ConsentStatus.GRACE_PERIOD
        assert result.days_remaining == -1
        assert result.is_accessible is True

    def test_day_212_expired(self, expires_at):
        result = status_at(GIVEN_AT + timedelta(days=212), expires_at=expires_at)

        assert result.status == ConsentStatus.EXPIRED
        assert result.is_accessible is False


class TestRecordStatus:
    def test_uses_policy_grace_period(self):
        candidate = make_candidate(consent_expires_at=EXPIRES_AT, policy=ConsentPolicy(grace_period_days=5))

        in_grace = compute_record_status(candidate.record, candidate.policy, utc(2025, 7, 4))
        expired = compute_record_status(candidate.record, candidate.policy, utc(2025, 7, 7))

        assert in_grace.status == ConsentStatus.GRACE_PERIOD
        assert expired.status == ConsentStatus.EXPIRED


class TestStatusBadge:
    @pytest.mark.parametrize(
        ("status", "label", "color"),
        [
            (ConsentStatus.ACTIVE, "Active", "green"),
            (ConsentStatus.GRACE_PERIOD, "Grace Period", "orange"),
            (ConsentStatus.EXPIRED, "Expired", "red"),
            (ConsentStatus.WITHDRAWN, "Withdrawn", "gray"),
            (ConsentStatus.NOT_GIVEN, "No Consent", "gray"),
        ],
    )
    def test_badges(self, status, label, color):
        badge = get_status_badge(ConsentStatusResult(status=status, is_accessible=True, message=""))

        assert badge.label == label
        assert badge.color == color

    def test_expiring_soon_badge(self):
        badge = get_status_badge(status_at(EXPIRES_AT - timedelta(days=10)))

        assert badge.label == "Expiring Soon"
        assert badge.color == "yellow"
