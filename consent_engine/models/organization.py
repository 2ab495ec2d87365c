from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship

from consent_engine.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    form_templates = relationship("FormTemplate", back_populates="organization")
