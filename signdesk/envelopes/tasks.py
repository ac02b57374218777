# signdesk/envelopes/tasks.py

"""
Celery tasks for envelope housekeeping.
Expiry is also applied lazily on every read; the sweep only gets there first.
"""

from celery import shared_task

from signdesk.core.db import AsyncSessionLocal
from signdesk.envelopes.services import EnvelopeService
from signdesk.notifications.dispatcher import NotificationDispatcher
from signdesk.notifications.tasks import run_async
from signdesk.utils.logger import get_logger
from signdesk.utils.s3_utils import s3_utils

logger = get_logger(__name__)


@shared_task(name="envelopes.expire_overdue")
def expire_overdue_envelopes_task():
    """
    Mark every pending envelope past its expiry instant as expired.
    """

    async def _sweep():
        async with AsyncSessionLocal() as db:
            try:
                service = EnvelopeService(db=db, dispatcher=NotificationDispatcher(), storage=s3_utils)
                expired = await service.sweep_expired()
                logger.info("Completed expiry sweep", expired=expired)
                return expired
            except Exception as e:
                logger.error(f"Error in expiry sweep: {str(e)}")
                raise

    return run_async(_sweep())


@shared_task(name="envelopes.send_reminders")
def send_signing_reminders_task():
    """
    Remind signers of pending envelopes that have reminders switched on.
    """

    async def _remind():
        async with AsyncSessionLocal() as db:
            try:
                service = EnvelopeService(db=db, dispatcher=NotificationDispatcher(), storage=s3_utils)
                reminded = await service.send_reminders()
                logger.info("Completed reminder run", envelopes=reminded)
                return reminded
            except Exception as e:
                logger.error(f"Error sending reminders: {str(e)}")
                raise

    return run_async(_remind())
