from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from app.core.config import settings
from app.core.logging import setup_logging
from app.core.sentry import init_sentry

celery_app = Celery(
    "llm_visibility_scan",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

# Beat only nudges; the scheduler's window and idempotency key decide whether
# a tenant's scan actually starts, so a 15-minute cadence is safe to repeat.
celery_app.conf.beat_schedule = {
    "dispatch-daily-scans": {
        "task": "dispatch_daily_scans",
        "schedule": crontab(minute="*/15"),
    },
    "reconcile-stuck-jobs": {
        "task": "reconcile_stuck_jobs",
        "schedule": crontab(minute="*/5"),
    },
    "scan-health-check": {
        "task": "scan_health_check",
        "schedule": crontab(minute=30),  # hourly
    },
}

celery_app.conf.include = [
    "app.tasks.scan_tasks",
]


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Connecting this signal stops Celery from replacing our root handlers
    setup_logging()


init_sentry()
