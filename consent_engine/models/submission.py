"""
Submission model.

Holds the consent columns of a patient's form submission. Status is never
stored here; it is derived from the timestamps on every read.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from consent_engine.database import Base


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    form_template_id = Column(Integer, ForeignKey("form_templates.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    consent_given = Column(Boolean, nullable=False, default=False)
    consent_at = Column(DateTime(timezone=True), nullable=True)
    consent_expires_at = Column(DateTime(timezone=True), nullable=True)
    consent_duration_months = Column(Integer, nullable=True)
    consent_withdrawn_at = Column(DateTime(timezone=True), nullable=True)
    withdrawal_reason = Column(Text, nullable=True)

    auto_renew = Column(Boolean, nullable=False, default=False)
    renewed_at = Column(DateTime(timezone=True), nullable=True)
    renewal_count = Column(Integer, nullable=False, default=0)
    # JSON array of renewal history entries, oldest first
    renewal_history = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    form_template = relationship("FormTemplate", back_populates="submissions")
    user = relationship("User", back_populates="submissions")
    notifications = relationship("EmailNotification", back_populates="submission")
    activity_logs = relationship("ActivityLog", back_populates="submission", passive_deletes=True)

    __table_args__ = (
        Index("idx_submission_consent_expiry", "consent_given", "consent_withdrawn_at", "consent_expires_at"),
        Index("idx_submission_auto_renew", "auto_renew", "consent_expires_at"),
    )
