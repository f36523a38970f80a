import logging
from datetime import date
from typing import Optional
from dateutil.relativedelta import relativedelta
from app.celery_app import celery_app
from app.core.database import SessionLocal
from app.services.settlement import SettlementAggregator

logger = logging.getLogger(__name__)


def previous_month(today: Optional[date] = None) -> str:
    today = today or date.today()
    return (today.replace(day=1) - relativedelta(months=1)).strftime("%Y-%m")


@celery_app.task(name="auto_generate_monthly_settlements")
def auto_generate_monthly_settlements(month: Optional[str] = None, include_all: bool = False):
    """
    Async task to generate draft settlements for every salesperson with
    unsettled records. Defaults to the previous month.
    """
    month = month or previous_month()
    db = SessionLocal()
    try:
        result = SettlementAggregator(db, require_records=True).auto_generate(month, include_all)
        logger.info(f"Monthly settlement run for {month}: {result['count']} generated")
        return {
            "month": month,
            "count": result["count"],
            "skipped": result["skipped"],
            "failed": result["failed"],
        }
    finally:
        db.close()
