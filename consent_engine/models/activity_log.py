from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from consent_engine.database import Base


class ActivityLog(Base):
    """Append-only audit trail of consent lifecycle actions."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(50), nullable=False)
    # The patient the consent belongs to; `details.renewed_by` says who acted
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="SET NULL"), nullable=True)
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    description = Column(Text, nullable=False)
    details = Column(Text, nullable=True)

    user = relationship("User", back_populates="activity_logs")
    submission = relationship("Submission", back_populates="activity_logs")

    __table_args__ = (
        Index("idx_activity_user_action_timestamp", "user_id", "action", "timestamp"),
        Index("idx_activity_submission_action_timestamp", "submission_id", "action", "timestamp"),
    )
