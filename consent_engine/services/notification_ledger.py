"""
Notification Ledger

Durable record of notifications sent per submission. Expiry warnings use it
as their deduplication key: an entry exists only once the email was
actually delivered, so a missing entry is what makes the next run retry.
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consent_engine.database import AsyncSessionLocal
from consent_engine.exceptions import PersistenceError
from consent_engine.models.email_notification import EmailNotification
from consent_engine.utils.dates import ensure_utc, utcnow

logger = logging.getLogger(__name__)

AUTO_RENEWAL = "auto_renewal"
CONSENT_RENEWED = "consent_renewed"
CONSENT_WITHDRAWN = "consent_withdrawn"


def expiry_notification_type(threshold_days: int) -> str:
    return f"expiry_{threshold_days}d"


class NotificationLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory

    async def has_entry(self, record_id: int, notification_type: str, renewal_cycle: int = 0) -> bool:
        query = (
            select(EmailNotification.id)
            .where(
                EmailNotification.submission_id == record_id,
                EmailNotification.notification_type == notification_type,
                EmailNotification.renewal_cycle == renewal_cycle,
            )
            .limit(1)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalar_one_or_none() is not None

    async def record(
        self,
        record_id: int,
        notification_type: str,
        recipient_email: str,
        subject: str,
        renewal_cycle: int = 0,
        message_id: str | None = None,
        sent_at: datetime | None = None,
    ) -> bool:
        """
        Append a ledger entry.

        Returns:
            bool: False if an entry with the same key already exists
        """
        entry = EmailNotification(
            submission_id=record_id,
            notification_type=notification_type,
            renewal_cycle=renewal_cycle,
            recipient_email=recipient_email,
            subject=subject,
            message_id=message_id,
            sent_at=ensure_utc(sent_at) if sent_at else utcnow(),
        )
        async with self.session_factory() as session:
            session.add(entry)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(
                    "notification_ledger: %s already recorded for submission %s (cycle %d)",
                    notification_type,
                    record_id,
                    renewal_cycle,
                )
                return False
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(
                    "Failed to record notification", record_id=record_id, operation="record_notification"
                ) from exc
        return True
