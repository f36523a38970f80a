"""Commission scheme configuration - key/value overrides for the scheme window."""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from app.core.database import Base


class SchemeConfigEntry(Base):
    """Key-value store for scheme settings like the start date and trial length."""
    __tablename__ = "commission_scheme_config"

    id = Column(Integer, primary_key=True, index=True)
    config_key = Column(String, nullable=False, unique=True, index=True)  # e.g. "penalty_trial_months"
    config_value = Column(String, nullable=False)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
