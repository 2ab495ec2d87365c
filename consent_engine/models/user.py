from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from consent_engine.database import Base


class User(Base):
    """Patient account. Only the fields needed to address notifications live here."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    submissions = relationship("Submission", back_populates="user")
    activity_logs = relationship("ActivityLog", back_populates="user", passive_deletes=True)
