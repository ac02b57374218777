### signdesk/worker/start_beat.py

"""
Celery beat startup script. Triggers the periodic tasks in config.py
"""

from signdesk.worker.app import app


def start_beat():
    """Start the celery beat scheduler."""
    argv = [
        "beat",
        "--loglevel=info",
    ]
    app.start(argv)


if __name__ == "__main__":
    start_beat()
