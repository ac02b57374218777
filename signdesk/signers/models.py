# signdesk/signers/models.py

"""
SQLAlchemy 2.x model for invited signers
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signdesk.core.db import Base
from signdesk.users.models import TimestampMixin
from signdesk.signers.schemas import SignerStatus


class Signer(Base, TimestampMixin):
    """
    One invited party on an envelope, addressed by an opaque access token.
    """
    __tablename__ = "signers"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    envelope_id: Mapped[int] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Foreign Key to envelopes"
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    color: Mapped[str] = mapped_column(String(16), nullable=False)
    order: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
        comment="Sequential gating position, unique within an envelope"
    )

    status: Mapped[SignerStatus] = mapped_column(
        SQLEnum(SignerStatus, native_enum=False, length=24),
        nullable=False, default=SignerStatus.PENDING, index=True
    )

    token: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True,
        comment="Opaque signing capability"
    )
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_field_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    phone_2fa_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    phone_2fa_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Field writes bump it so signing serializes against them
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    envelope: Mapped["Envelope"] = relationship("Envelope", back_populates="signers")
    fields: Mapped[list["Field"]] = relationship(
        "Field", back_populates="signer", order_by="Field.id",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        UniqueConstraint('envelope_id', 'order', name='uq_signer_envelope_order'),
    )

    def __repr__(self):
        return f"<Signer(id={self.id}, email={self.email}, order={self.order}, status={self.status})>"
