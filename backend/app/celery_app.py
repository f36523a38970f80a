from celery import Celery
from celery.schedules import crontab
from app.core.config import settings

celery_app = Celery(
    "commission_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.async_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
)

# Close out the previous month on the 1st
celery_app.conf.beat_schedule = {
    "auto-generate-monthly-settlements": {
        "task": "auto_generate_monthly_settlements",
        "schedule": crontab(minute=0, hour=2, day_of_month=1),
    },
}
