"""
FormTemplate model.

Only the consent policy columns are modelled; field definitions and form
layout are owned by the form builder.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from consent_engine.database import Base


class FormTemplate(Base):
    __tablename__ = "form_templates"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)

    # Consent policy (months)
    default_consent_duration = Column(Integer, nullable=False, default=12)
    min_consent_duration = Column(Integer, nullable=False, default=3)
    max_consent_duration = Column(Integer, nullable=False, default=24)
    grace_period_days = Column(Integer, nullable=True, default=30)
    allow_auto_renewal = Column(Boolean, nullable=False, default=True)

    organization = relationship("Organization", back_populates="form_templates")
    submissions = relationship("Submission", back_populates="form_template")

    __table_args__ = (
        CheckConstraint(
            "min_consent_duration <= default_consent_duration AND default_consent_duration <= max_consent_duration",
            name="ck_form_template_consent_duration_bounds",
        ),
        CheckConstraint("min_consent_duration >= 1", name="ck_form_template_min_duration_positive"),
    )
