from pydantic import BaseModel, Field
from typing import Optional
from datetime import date
from enum import Enum


class SchemeConfig(BaseModel):
    """Commission scheme window consumed by the trial period calculator."""
    start_date: date
    trial_period_months: int = Field(..., ge=0)
    scheme_min: int = Field(..., ge=0)  # informational only
    scheme_max: int = Field(..., ge=0)

    class Config:
        frozen = True


class SchemeConfigUpdate(BaseModel):
    start_date: Optional[date] = None
    trial_period_months: Optional[int] = Field(None, ge=0)
    scheme_min: Optional[int] = Field(None, ge=0)
    scheme_max: Optional[int] = Field(None, ge=0)


class SchemePhase(str, Enum):
    NOT_STARTED = "not_started"
    PENALTY_TRIAL = "penalty_trial"
    RUNNING = "running"
    REVIEW = "review"


class TrialStatus(BaseModel):
    phase: SchemePhase
    in_penalty_trial: bool
    months_elapsed: int
    remaining_trial_months: int = 0
    trial_end_date: date
    message: str
