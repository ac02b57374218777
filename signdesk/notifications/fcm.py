# signdesk/notifications/fcm.py

from typing import Optional

import firebase_admin
from firebase_admin import credentials, messaging

from signdesk.core.config import settings
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)


def user_topic(user_id: int) -> str:
    return f"user_{user_id}"


def _ensure_firebase_app() -> bool:
    """Initialise the default Firebase app once; False when push is not configured"""
    if firebase_admin._apps:
        return True
    if not settings.firebase_cred_path:
        return False
    firebase_admin.initialize_app(credentials.Certificate(settings.firebase_cred_path))
    return True


def send_fcm_notification_to_topic(topic: str, title: str, body: str, data: Optional[dict] = None):
    if not _ensure_firebase_app():
        logger.info("Push notifications disabled, skipping", topic=topic)
        return None

    message = messaging.Message(
        notification=messaging.Notification(
            title=title,
            body=body,
        ),
        data={key: str(value) for key, value in (data or {}).items() if value is not None},
        topic=topic,
    )

    try:
        response = messaging.send(message)
        logger.info("Successfully sent FCM notification", topic=topic, response=response)
        return response
    except Exception as e:
        logger.error("Failed to send FCM notification", topic=topic, error=str(e))
        return None
