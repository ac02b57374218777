# signdesk/notifications/models.py

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from signdesk.core.db import Base
from signdesk.users.models import TimestampMixin
from signdesk.notifications.schemas import NotificationKind


class Notification(Base, TimestampMixin):
    """In-app notification for a user"""
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[NotificationKind] = mapped_column(
        SQLEnum(NotificationKind, native_enum=False, length=24), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Plain references; notifications outlive a purged envelope
    envelope_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    envelope_slug: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)

    sender_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    sender_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Notification(user_id={self.user_id}, kind={self.kind})>"
