"""Celery application instance shared across the backend.

Start a worker and the beat scheduler with:
    celery -A app.celery_app worker -Q reminder,calendar -l info
    celery -A app.celery_app beat -l info
"""

from celery import Celery
from celery.schedules import crontab

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("reminder_bot", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds
celery_app.conf.worker_concurrency = settings.WORKER_CONCURRENCY
celery_app.conf.timezone = settings.DEFAULT_TIMEZONE

celery_app.conf.task_routes = {
    "app.workers.reminder.handle": {"queue": "reminder"},
    "app.workers.reminder.dispatch_due": {"queue": "reminder"},
    "app.workers.reminder.sync_calendar": {"queue": "calendar"},
}

# Beat schedule: dispatch due reminders every minute, pre-warm day times daily
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "app.workers.reminder.dispatch_due",
        "schedule": settings.DISPATCH_INTERVAL_SECONDS,
    },
    "sync-calendar": {
        "task": "app.workers.reminder.sync_calendar",
        "schedule": crontab(hour=0, minute=5),
    },
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
