# signdesk/notifications/dispatcher.py

"""
Fire-and-forget fan-out of workflow notifications.
Dispatch happens after the triggering transaction committed; a failure to
enqueue is logged and never reaches the caller.
"""

from typing import Any, Callable, Dict, Optional

from signdesk.notifications.schemas import NotificationKind
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)


def enqueue_with_celery(message: Dict[str, Any]) -> None:
    """Hand the message to the worker queue"""
    # Imported here so the web process only touches Celery on first use
    from signdesk.notifications.tasks import deliver_notification_task

    deliver_notification_task.delay(message)


class NotificationDispatcher:
    """
    Best-effort notification sink.
    """

    def __init__(self, enqueue: Optional[Callable[[Dict[str, Any]], Any]] = None):
        self.enqueue = enqueue or enqueue_with_celery

    def dispatch(
        self,
        user_id: Optional[int],
        kind: NotificationKind,
        payload: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Enqueue one notification. `user_id` may be None when the recipient is
        only known by the email in the payload.

        Returns:
            True if the message was enqueued, False otherwise
        """
        message = {
            "user_id": user_id,
            "kind": kind.value,
            "payload": payload or {},
        }
        try:
            self.enqueue(message)
        except Exception as e:
            logger.error(
                "Failed to enqueue notification",
                user_id=user_id, kind=kind.value, error=str(e), exc_info=True,
            )
            return False
        logger.info("Notification enqueued", user_id=user_id, kind=kind.value)
        return True


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency, overridden in tests"""
    return NotificationDispatcher()
