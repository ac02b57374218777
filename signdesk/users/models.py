# signdesk/users/models.py

from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from signdesk.core.db import Base
from signdesk.utils.general import utcnow


# --- Mixins ---
class TimestampMixin:
    """Mixin for record timestamps."""

    created_on = Column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        comment="Timestamp when this record was created",
    )
    updated_on = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        comment="Timestamp when this record was last updated",
    )
# --- End of Mixins ---


class User(Base, TimestampMixin):
    """Account that owns envelopes and receives notifications"""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    email_address: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def display_name(self) -> str:
        """First and last name, or the email when no name is set"""
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email_address

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email_address})>"
