### signdesk/worker/app.py

"""
Celery application for notification delivery and envelope housekeeping.
"""

from celery import Celery

app = Celery("signdesk")

app.config_from_object("signdesk.worker.config")

# Looks for tasks.py in each package
app.autodiscover_tasks([
    "signdesk.envelopes",
    "signdesk.notifications",
])

if __name__ == "__main__":
    app.start()
