### signdesk/worker/start_worker.py

"""
Celery worker startup script
"""

from signdesk.worker.app import app


def start_worker():
    """Start the celery worker."""
    argv = [
        "worker",
        "--loglevel=info",
        "--concurrency=3",
        "--max-tasks-per-child=100",
        "--prefetch-multiplier=1",
    ]
    app.worker_main(argv)


if __name__ == "__main__":
    start_worker()
