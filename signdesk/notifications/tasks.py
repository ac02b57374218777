# signdesk/notifications/tasks.py

"""
Celery task delivering dispatched notifications.
"""

import asyncio
from typing import Any, Dict

from celery import shared_task

from signdesk.core.db import AsyncSessionLocal
from signdesk.notifications.services import NotificationService
from signdesk.utils.email_service import get_mailer
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)


def run_async(coro):
    """Run a coroutine to completion from a synchronous Celery task"""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@shared_task(name="notifications.deliver")
def deliver_notification_task(message: Dict[str, Any]):
    """
    Persist, push and email one notification.
    """

    async def _deliver():
        async with AsyncSessionLocal() as db:
            try:
                service = NotificationService(db=db, mailer=get_mailer())
                notification = await service.deliver(message)
                return notification.id if notification else None
            except Exception as e:
                logger.error(f"Error delivering notification: {str(e)}", kind=message.get("kind"))
                raise

    return run_async(_deliver())
