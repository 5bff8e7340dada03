from celery import Celery
from celery.schedules import crontab
from tourdesk.config import get_settings

settings = get_settings()

app = Celery(
    "tourdesk",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["celery_app.tasks.automation"]
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.scheduler_timezone,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,
    worker_prefetch_multiplier=1,
)

# Alternative to the in-process APScheduler; run one or the other, not both
app.conf.beat_schedule = {
    "reservation-automation": {
        "task": "celery_app.tasks.automation.run_automation",
        "schedule": crontab(minute=0),
    },
}
