"""Commission scheme phases and the penalty trial period.

Phases, at whole-month granularity (day of month ignored):
- not_started:    today is before the scheme start date
- penalty_trial:  first N months - penalties are recorded and communicated,
                  never deducted
- running:        trial over, scheme in its evaluation window
- review:         scheme_max months reached, scheme should be re-evaluated
"""
import logging
from datetime import date, datetime
from typing import Dict, Optional, Union
from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.scheme_config import SchemeConfigEntry
from app.schemas.scheme import SchemeConfig, SchemePhase, TrialStatus

logger = logging.getLogger(__name__)

# config_key -> SchemeConfig field
CONFIG_KEYS = {
    "scheme_start_date": "start_date",
    "penalty_trial_months": "trial_period_months",
    "scheme_min_duration": "scheme_min",
    "scheme_max_duration": "scheme_max",
}


def months_between(start: date, now: date) -> int:
    return (now.year - start.year) * 12 + (now.month - start.month)


class TrialPeriodCalculator:
    """Maps a date onto the scheme phase for a given scheme configuration."""

    def __init__(self, config: SchemeConfig):
        self.config = config

    def status(self, now: Optional[Union[date, datetime]] = None) -> TrialStatus:
        if now is None:
            now = date.today()
        elif isinstance(now, datetime):
            now = now.date()

        cfg = self.config
        trial_end = cfg.start_date + relativedelta(months=cfg.trial_period_months)
        months = months_between(cfg.start_date, now)

        if now < cfg.start_date:
            return TrialStatus(
                phase=SchemePhase.NOT_STARTED,
                in_penalty_trial=False,
                months_elapsed=0,
                trial_end_date=trial_end,
                message="Scheme has not started yet",
            )

        if months < cfg.trial_period_months:
            remaining = cfg.trial_period_months - months
            return TrialStatus(
                phase=SchemePhase.PENALTY_TRIAL,
                in_penalty_trial=True,
                months_elapsed=months,
                remaining_trial_months=remaining,
                trial_end_date=trial_end,
                message=f"Penalty trial period, {remaining} month(s) remaining - penalties are communicated, not deducted",
            )

        if months < cfg.scheme_max:
            return TrialStatus(
                phase=SchemePhase.RUNNING,
                in_penalty_trial=False,
                months_elapsed=months,
                trial_end_date=trial_end,
                message=f"Scheme running ({months}/{cfg.scheme_min}-{cfg.scheme_max} months)",
            )

        return TrialStatus(
            phase=SchemePhase.REVIEW,
            in_penalty_trial=False,
            months_elapsed=months,
            trial_end_date=trial_end,
            message="Scheme trial window is over, review whether to adjust or continue",
        )

    def in_penalty_trial(self, now: Optional[Union[date, datetime]] = None) -> bool:
        return self.status(now).in_penalty_trial


def default_scheme_config() -> SchemeConfig:
    return SchemeConfig(
        start_date=date.fromisoformat(settings.SCHEME_START_DATE),
        trial_period_months=settings.PENALTY_TRIAL_MONTHS,
        scheme_min=settings.SCHEME_MIN_DURATION,
        scheme_max=settings.SCHEME_MAX_DURATION,
    )


def _validate(values: Dict) -> SchemeConfig:
    if values["scheme_min"] > values["scheme_max"]:
        raise ValidationError(
            "Scheme minimum duration cannot exceed maximum duration",
            scheme_min=values["scheme_min"],
            scheme_max=values["scheme_max"],
        )
    try:
        return SchemeConfig(**values)
    except ValueError as e:
        raise ValidationError(f"Invalid scheme configuration: {e}")


def load_scheme_config(db: Session) -> SchemeConfig:
    """Settings defaults overlaid with commission_scheme_config rows."""
    values = default_scheme_config().model_dump()

    for entry in db.query(SchemeConfigEntry).all():
        field = CONFIG_KEYS.get(entry.config_key)
        if not field:
            continue
        try:
            if field == "start_date":
                values[field] = date.fromisoformat(entry.config_value)
            else:
                values[field] = int(entry.config_value)
        except ValueError:
            logger.warning(f"Ignoring invalid scheme config {entry.config_key}={entry.config_value!r}")

    return _validate(values)


def update_scheme_config(db: Session, changes: Dict, updated_by: Optional[int] = None) -> SchemeConfig:
    current = load_scheme_config(db).model_dump()
    changes = {k: v for k, v in changes.items() if v is not None}
    current.update(changes)
    config = _validate(current)

    field_to_key = {v: k for k, v in CONFIG_KEYS.items()}
    for field, value in changes.items():
        key = field_to_key[field]
        stored = value.isoformat() if isinstance(value, date) else str(value)
        entry = db.query(SchemeConfigEntry).filter(SchemeConfigEntry.config_key == key).first()
        if entry:
            entry.config_value = stored
            entry.updated_by = updated_by
        else:
            db.add(SchemeConfigEntry(config_key=key, config_value=stored, updated_by=updated_by))

    db.commit()
    logger.info(f"Scheme config updated: {changes}")
    return config
