# signdesk/envelopes/models.py

"""
SQLAlchemy 2.x model for signature requests
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Index, Integer, String, Text,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signdesk.core.db import Base
from signdesk.users.models import TimestampMixin
from signdesk.envelopes.schemas import EnvelopeStatus, SigningOrder, DeclinePolicy


class Envelope(Base, TimestampMixin):
    """
    One signature request wrapping a single document and its signers.
    `status` is a cached projection of the signer set plus the clock.
    """
    __tablename__ = "envelopes"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    slug: Mapped[str] = mapped_column(
        String(16), unique=True, nullable=False, index=True,
        comment="URL-safe public routing key, immutable once issued"
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Foreign Key to the owning user"
    )

    status: Mapped[EnvelopeStatus] = mapped_column(
        SQLEnum(EnvelopeStatus, native_enum=False, length=24),
        nullable=False, default=EnvelopeStatus.DRAFT, index=True,
        comment="Cached envelope status"
    )
    signing_order: Mapped[SigningOrder] = mapped_column(
        SQLEnum(SigningOrder, native_enum=False, length=24),
        nullable=False, default=SigningOrder.PARALLEL
    )
    decline_policy: Mapped[DeclinePolicy] = mapped_column(
        SQLEnum(DeclinePolicy, native_enum=False, length=24),
        nullable=False, default=DeclinePolicy.CANCEL_ENVELOPE
    )

    document_key: Mapped[str] = mapped_column(
        String(512), nullable=False, comment="Object storage key of the source document"
    )
    document_hash: Mapped[str] = mapped_column(
        String(64), nullable=False, comment="SHA-256 of the source document"
    )
    preview_key: Mapped[Optional[str]] = mapped_column(
        String(512), nullable=True, comment="Object storage key of the rendered preview"
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    reminder_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_reminder_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic lock; every signer transition bumps it
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    signers: Mapped[list["Signer"]] = relationship(
        "Signer", back_populates="envelope", order_by="Signer.order",
        passive_deletes=True,
    )
    fields: Mapped[list["Field"]] = relationship(
        "Field", back_populates="envelope", order_by="Field.id",
        passive_deletes=True,
    )
    owner: Mapped["User"] = relationship("User", lazy="joined")

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index('idx_envelope_owner_status', 'owner_id', 'status'),
        Index('idx_envelope_status_expiry', 'status', 'expires_at'),
    )

    def __repr__(self):
        return f"<Envelope(slug={self.slug}, name={self.name}, status={self.status})>"
