### signdesk/worker/config.py

"""
Celery configuration settings: broker, serialization and the beat schedule.
"""

from celery.schedules import crontab

from signdesk.core.config import settings

broker_url = settings.celery_broker
result_backend = settings.celery_backend

task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

task_track_started = True
task_time_limit = 10 * 60
task_soft_time_limit = 8 * 60
worker_prefetch_multiplier = 1
task_acks_late = True

beat_schedule = {
    # Pending envelopes past their expiry instant
    "envelopes-expire-overdue": {
        "task": "envelopes.expire_overdue",
        "schedule": crontab(minute=0),  # Hourly
    },
    "envelopes-send-reminders": {
        "task": "envelopes.send_reminders",
        "schedule": crontab(hour=9, minute=0),  # Daily at 9 AM UTC
    },
}
