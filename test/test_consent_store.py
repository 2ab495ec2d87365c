"""
Tests for the SQLAlchemy consent store and notification ledger
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from consent_engine.exceptions import PersistenceError, UnreadableRecordError
from consent_engine.schemas.activity import ActivityEvent
from consent_engine.schemas.consent import RenewedBy
from consent_engine.services.consent_renewal import create_renewal_entry
from consent_engine.services.consent_store import require_readable_history
from consent_engine.utils.activity_log import ConsentActions
from utils.fakes import utc

NOW = utc(2025, 6, 1, 8, 0)


def consent(expires_at, **kwargs):
    fields = {
        "consent_given": True,
        "consent_at": expires_at - timedelta(days=365),
        "consent_expires_at": expires_at,
        "consent_duration_months": 12,
    }
    fields.update(kwargs)
    return fields


class TestQueries:
    async def test_find_expiring_between(self, seed, consent_store):
        inside = await seed(user={"email": "in@example.com"}, **consent(utc(2025, 6, 8, 12, 0)))
        await seed(user={"email": "early@example.com"}, **consent(utc(2025, 6, 7, 23, 0)))
        await seed(user={"email": "late@example.com"}, **consent(utc(2025, 6, 9, 0, 0)))
        await seed(user={"email": "gone@example.com"}, **consent(utc(2025, 6, 8, 12, 0), consent_withdrawn_at=NOW))
        await seed(user=False, **consent(utc(2025, 6, 8, 12, 0)))

        candidates = await consent_store.find_expiring_between(utc(2025, 6, 8), utc(2025, 6, 8, 23, 59, 59))

        assert [c.record.id for c in candidates] == [inside]
        candidate = candidates[0]
        assert candidate.recipient_email == "in@example.com"
        assert candidate.recipient_name == "Pat Patient"
        assert candidate.organization_name == "Riverside Clinic"
        assert candidate.form_title == "Intake Form"
        assert candidate.record.consent_expires_at == utc(2025, 6, 8, 12, 0)

    async def test_find_auto_renewal_candidates(self, seed, consent_store):
        opted_in = await seed(user={"email": "a@example.com"}, auto_renew=True, **consent(utc(2025, 6, 5)))
        await seed(user={"email": "b@example.com"}, auto_renew=False, **consent(utc(2025, 6, 5)))
        await seed(user={"email": "c@example.com"}, auto_renew=True, **consent(utc(2025, 6, 20)))
        await seed(user={"email": "d@example.com"}, auto_renew=True, **consent(utc(2025, 5, 31)))

        candidates = await consent_store.find_auto_renewal_candidates(NOW, NOW + timedelta(days=7))

        assert [c.record.id for c in candidates] == [opted_in]

    async def test_policy_is_loaded_from_template(self, seed, consent_store):
        record_id = await seed(
            template={"default_consent_duration": 6, "min_consent_duration": 3, "max_consent_duration": 12,
                      "grace_period_days": None, "allow_auto_renewal": False},
            **consent(utc(2025, 6, 5)),
        )

        candidate = await consent_store.get(record_id)

        assert candidate.policy.default_consent_duration == 6
        assert candidate.policy.max_consent_duration == 12
        assert candidate.policy.allow_auto_renewal is False
        # Missing grace period falls back to the configured default
        assert candidate.policy.grace_period_days == 30

    async def test_get_missing(self, consent_store):
        assert await consent_store.get(9999) is None

    async def test_list_for_user(self, seed, consent_store):
        record_id = await seed(user={"email": "list@example.com"}, **consent(utc(2025, 6, 5)))
        candidate = await consent_store.get(record_id)

        listed = await consent_store.list_for_user(candidate.user_id)

        assert [c.record.id for c in listed] == [record_id]


class TestStoredHistory:
    async def test_camel_case_provider_history_is_read(self, seed, consent_store):
        record_id = await seed(
            renewal_count=1,
            renewal_history=(
                '[{"previousExpiresAt": "2024-06-05T00:00:00Z", "newExpiresAt": "2025-06-05T00:00:00Z",'
                ' "renewedBy": "provider", "durationMonths": 12, "renewedAt": "2024-05-30T10:00:00Z"}]'
            ),
            **consent(utc(2025, 6, 5)),
        )

        candidate = await consent_store.get(record_id)

        assert candidate.history_error is None
        [entry] = candidate.record.renewal_history
        assert entry.renewed_by == RenewedBy.PROVIDER
        assert entry.new_expires_at == utc(2025, 6, 5)
        assert entry.occurred_at == utc(2024, 5, 30, 10, 0)
        require_readable_history(candidate)

    async def test_corrupt_history_is_flagged_not_raised(self, seed, consent_store):
        corrupt = await seed(user={"email": "x@example.com"}, renewal_history="{oops", **consent(utc(2025, 6, 5)))
        invalid = await seed(
            user={"email": "y@example.com"},
            renewal_history='[{"renewedBy": "nurse"}]',
            **consent(utc(2025, 6, 5)),
        )

        candidates = await consent_store.find_expiring_between(utc(2025, 6, 1), utc(2025, 6, 30))

        assert [c.record.id for c in candidates] == [corrupt, invalid]
        for candidate in candidates:
            assert candidate.history_error
            assert candidate.record.renewal_history == []
            with pytest.raises(UnreadableRecordError) as exc_info:
                require_readable_history(candidate)
            assert exc_info.value.details["record_id"] == candidate.record.id

    async def test_row_with_inconsistent_template_is_skipped(self, seed, consent_store):
        broken = await seed(
            user={"email": "bad-template@example.com"},
            template={"grace_period_days": -5},
            **consent(utc(2025, 6, 5)),
        )
        fine = await seed(user={"email": "fine@example.com"}, **consent(utc(2025, 6, 5)))

        candidates = await consent_store.find_expiring_between(utc(2025, 6, 1), utc(2025, 6, 30))

        assert [c.record.id for c in candidates] == [fine]
        assert await consent_store.get(broken) is None

class TestApplyRenewal:
    async def test_writes_all_fields_together(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5)))
        entry = create_renewal_entry(utc(2025, 6, 5), utc(2025, 12, 5), RenewedBy.PATIENT, 6, NOW)

        applied = await consent_store.apply_renewal(record_id, 0, utc(2025, 12, 5), 6, NOW, [entry])

        record = (await consent_store.get(record_id)).record
        assert applied is True
        assert record.consent_expires_at == utc(2025, 12, 5)
        assert record.consent_duration_months == 6
        assert record.renewed_at == NOW
        assert record.renewal_count == 1
        assert record.renewal_history == [entry]

    async def test_stale_renewal_count_is_rejected(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5)))
        await consent_store.apply_renewal(record_id, 0, utc(2025, 12, 5), 6, NOW, [])

        applied = await consent_store.apply_renewal(record_id, 0, utc(2026, 6, 5), 12, NOW, [])

        record = (await consent_store.get(record_id)).record
        assert applied is False
        assert record.consent_expires_at == utc(2025, 12, 5)
        assert record.renewal_count == 1

    async def test_withdrawn_record_is_not_renewed(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5), consent_withdrawn_at=NOW))

        assert await consent_store.apply_renewal(record_id, 0, utc(2025, 12, 5), 6, NOW, []) is False

    async def test_database_error_raises_persistence_error(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5)))

        with patch(
            "sqlalchemy.ext.asyncio.AsyncSession.execute",
            side_effect=OperationalError("UPDATE submissions", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(PersistenceError) as exc_info:
                await consent_store.apply_renewal(record_id, 0, utc(2025, 12, 5), 6, NOW, [])

        assert exc_info.value.details == {"record_id": record_id, "operation": "apply_renewal"}
        record = (await consent_store.get(record_id)).record
        assert record.renewal_count == 0


class TestWithdrawAndAutoRenew:
    async def test_withdraw_is_one_way(self, seed, consent_store):
        record_id = await seed(auto_renew=True, **consent(utc(2025, 6, 5)))

        first = await consent_store.withdraw(record_id, "Moving away", NOW)
        second = await consent_store.withdraw(record_id, "Again", NOW + timedelta(days=1))

        record = (await consent_store.get(record_id)).record
        assert first is True
        assert second is False
        assert record.consent_withdrawn_at == NOW
        assert record.withdrawal_reason == "Moving away"
        assert record.auto_renew is False

    async def test_set_auto_renew(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5)))

        assert await consent_store.set_auto_renew(record_id, True) is True
        assert (await consent_store.get(record_id)).record.auto_renew is True


class TestNotificationLedger:
    async def test_record_and_check(self, seed, notification_ledger):
        record_id = await seed(**consent(utc(2025, 6, 5)))

        assert await notification_ledger.has_entry(record_id, "expiry_7d", 0) is False
        assert await notification_ledger.record(record_id, "expiry_7d", "p@example.com", "Urgent", message_id="<1@x>")
        assert await notification_ledger.has_entry(record_id, "expiry_7d", 0) is True

    async def test_duplicate_key_returns_false(self, seed, notification_ledger):
        record_id = await seed(**consent(utc(2025, 6, 5)))
        await notification_ledger.record(record_id, "expiry_7d", "p@example.com", "Urgent")

        assert await notification_ledger.record(record_id, "expiry_7d", "p@example.com", "Urgent") is False

    async def test_cycles_are_independent(self, seed, notification_ledger):
        record_id = await seed(**consent(utc(2025, 6, 5)))
        await notification_ledger.record(record_id, "expiry_7d", "p@example.com", "Urgent", renewal_cycle=0)

        assert await notification_ledger.has_entry(record_id, "expiry_7d", 1) is False
        assert await notification_ledger.record(record_id, "expiry_7d", "p@example.com", "Urgent", renewal_cycle=1)


def audit_event(record_id: int, action: str = ConsentActions.RENEW_CONSENT, **details) -> ActivityEvent:
    return ActivityEvent(
        action=action,
        description=f"{action} for {record_id}",
        submission_id=record_id,
        occurred_at=NOW,
        details=details,
    )


class TestActivityLog:
    async def test_renewal_writes_audit_row(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5)))
        event = audit_event(record_id, renewed_by="patient", new_expires_at=utc(2025, 12, 5))

        await consent_store.apply_renewal(record_id, 0, utc(2025, 12, 5), 6, NOW, [], activity=event)

        [entry] = await consent_store.list_activity(record_id)
        assert entry.action == ConsentActions.RENEW_CONSENT
        assert entry.submission_id == record_id
        assert entry.timestamp == NOW
        assert entry.details["renewed_by"] == "patient"
        assert entry.details["new_expires_at"].startswith("2025-12-05T00:00:00")

    async def test_rejected_update_writes_nothing(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5), consent_withdrawn_at=NOW))

        await consent_store.apply_renewal(record_id, 0, utc(2025, 12, 5), 6, NOW, [], activity=audit_event(record_id))
        await consent_store.withdraw(
            record_id, None, NOW, activity=audit_event(record_id, ConsentActions.WITHDRAW_CONSENT)
        )

        assert await consent_store.list_activity(record_id) == []

    async def test_update_is_not_committed_without_its_audit_row(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5)))
        event = audit_event(record_id, ConsentActions.WITHDRAW_CONSENT, reason=object())

        with pytest.raises(ValueError):
            await consent_store.withdraw(record_id, "Moving away", NOW, activity=event)

        record = (await consent_store.get(record_id)).record
        assert record.consent_withdrawn_at is None
        assert await consent_store.list_activity(record_id) == []

    async def test_entries_are_ordered_oldest_first(self, seed, consent_store):
        record_id = await seed(**consent(utc(2025, 6, 5)))
        later = audit_event(record_id, ConsentActions.UPDATE_AUTO_RENEW, auto_renew=True).model_copy(
            update={"occurred_at": NOW + timedelta(hours=2)}
        )
        earlier = audit_event(record_id, ConsentActions.UPDATE_AUTO_RENEW, auto_renew=False).model_copy(
            update={"occurred_at": NOW + timedelta(hours=1)}
        )

        await consent_store.set_auto_renew(record_id, True, activity=later)
        await consent_store.set_auto_renew(record_id, False, activity=earlier)

        entries = await consent_store.list_activity(record_id)
        assert [entry.details["auto_renew"] for entry in entries] == [False, True]


class TestSnapshots:
    async def test_only_given_consents_with_their_organization(self, seed, consent_store):
        given = await seed(
            organization="Harbor Health",
            template={"grace_period_days": None},
            auto_renew=True,
            **consent(utc(2025, 6, 5)),
        )
        await seed(consent_given=False)

        [snapshot] = await consent_store.consent_snapshots()

        assert snapshot.submission_id == given
        assert snapshot.organization_name == "Harbor Health"
        assert snapshot.grace_period_days == 30
        assert snapshot.auto_renew is True
        assert snapshot.consent_expires_at == utc(2025, 6, 5)
