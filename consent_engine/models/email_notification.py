"""
EmailNotification model.

Durable ledger of notifications sent for a submission. The unique key
(submission_id, notification_type, renewal_cycle) deduplicates expiry
warnings within one consent window.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from consent_engine.database import Base


class EmailNotification(Base):
    __tablename__ = "email_notifications"

    id = Column(Integer, primary_key=True, index=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    notification_type = Column(String(50), nullable=False)  # expiry_30d | auto_renewal | consent_renewed | ...
    renewal_cycle = Column(Integer, nullable=False, default=0)
    recipient_email = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    message_id = Column(String(255), nullable=True)
    sent_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    submission = relationship("Submission", back_populates="notifications")

    __table_args__ = (
        UniqueConstraint(
            "submission_id", "notification_type", "renewal_cycle", name="uq_email_notification_submission_type_cycle"
        ),
    )
