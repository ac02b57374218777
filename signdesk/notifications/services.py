# signdesk/notifications/services.py

"""
Delivery side of notification dispatch, run by the worker: persists the
in-app notification, pushes it over FCM and sends the matching email.
"""

from typing import Any, Dict, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.core.db import get_async_db
from signdesk.core.exceptions import NotFoundException
from signdesk.notifications.fcm import send_fcm_notification_to_topic, user_topic
from signdesk.notifications.models import Notification
from signdesk.notifications.repository import NotificationRepository
from signdesk.notifications.schemas import (
    NotificationKind, NotificationListResponse, NotificationResponse,
)
from signdesk.users.models import User
from signdesk.users.repository import UserRepository
from signdesk.utils.email_service import EmailService, get_mailer
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)

EMAIL_TEMPLATES = {
    NotificationKind.INVITATION: ("invitation.html", "{sender} invited you to sign \"{document}\""),
    NotificationKind.REMINDER: ("reminder.html", "Reminder: \"{document}\" is waiting for your signature"),
    NotificationKind.COMPLETED: ("completed.html", "\"{document}\" has been signed by everyone"),
}


def render_message(kind: NotificationKind, payload: Dict[str, Any]) -> str:
    """One line of in-app text per notification kind"""
    signer = payload.get("signer_name") or payload.get("signer_email") or "A signer"
    sender = payload.get("sender_name") or payload.get("sender_email") or "Someone"
    if kind == NotificationKind.INVITATION:
        return f"{sender} invited you to sign this document"
    if kind == NotificationKind.SIGNED:
        return f"{signer} signed the document"
    if kind == NotificationKind.COMPLETED:
        return "The document has been signed by all signers"
    if kind == NotificationKind.REJECTED:
        message = f"{signer} declined to sign the document"
        if payload.get("reason"):
            message = f"{message}: {payload['reason']}"
        return message
    return f"{sender} is waiting for your signature"


class NotificationService:
    """
    Service layer for notifications.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_async_db),
        mailer: EmailService = Depends(get_mailer),
    ):
        self.db = db
        self.repo = NotificationRepository(db)
        self.users = UserRepository(db)
        self.mailer = mailer

    async def deliver(self, message: Dict[str, Any]) -> Optional[Notification]:
        """
        Deliver one dispatched message.

        The recipient is the user id when given, otherwise the account
        matching `recipient_email`, if any. Email goes to `recipient_email`,
        or to the user for completion notices.
        """
        kind = NotificationKind(message["kind"])
        payload = message.get("payload") or {}
        recipient_email = payload.get("recipient_email")

        user = None
        if message.get("user_id") is not None:
            user = await self.users.get_user_by_id(message["user_id"])
        elif recipient_email:
            user = await self.users.get_user_by_email(recipient_email)
        if user is not None and not user.is_active:
            user = None

        notification = None
        text = render_message(kind, payload)
        if user is not None:
            notification = await self.repo.create(
                Notification(
                    user_id=user.id,
                    kind=kind,
                    title=payload.get("envelope_name") or "Document",
                    message=text,
                    envelope_id=payload.get("envelope_id"),
                    envelope_slug=payload.get("envelope_slug"),
                    sender_email=payload.get("sender_email") or payload.get("signer_email"),
                    sender_name=payload.get("sender_name") or payload.get("signer_name"),
                )
            )
            await self.db.commit()
            send_fcm_notification_to_topic(
                user_topic(user.id),
                notification.title,
                text,
                data={"kind": kind.value, "envelope_slug": payload.get("envelope_slug")},
            )
            logger.info("Notification stored", user_id=user.id, kind=kind.value)

        email_to = recipient_email or (user.email_address if user and kind == NotificationKind.COMPLETED else None)
        if email_to and kind in EMAIL_TEMPLATES:
            template_name, subject = EMAIL_TEMPLATES[kind]
            await self.mailer.send_templated_email(
                to_emails=[email_to],
                subject=subject.format(
                    sender=payload.get("sender_name") or payload.get("sender_email") or "",
                    document=payload.get("envelope_name") or "Document",
                ),
                template_name=template_name,
                context={**payload, "text": text},
            )
        return notification

    async def list_notifications(self, user: User, unread_only: bool = False) -> NotificationListResponse:
        """Notifications of the user, newest first"""
        items = await self.repo.list_for_user(user.id, unread_only=unread_only)
        return NotificationListResponse(
            items=[NotificationResponse.model_validate(item) for item in items],
            unread=await self.repo.count_unread(user.id),
        )

    async def mark_read(self, notification_id: int, user: User) -> Notification:
        """Mark one of the user's notifications read"""
        notification = await self.repo.get_for_user(notification_id, user.id)
        if notification is None:
            raise NotFoundException("Notification", str(notification_id))
        notification.is_read = True
        await self.db.commit()
        logger.info("Notification marked read", notification_id=notification_id, user_id=user.id)
        return notification
