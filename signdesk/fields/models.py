# signdesk/fields/models.py

"""
SQLAlchemy 2.x model for fillable document fields
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from signdesk.core.db import Base
from signdesk.users.models import TimestampMixin
from signdesk.fields.schemas import FieldType


class Field(Base, TimestampMixin):
    """
    One fillable element bound to a single signer.
    """
    __tablename__ = "fields"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    envelope_id: Mapped[int] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Foreign Key to envelopes"
    )
    signer_id: Mapped[int] = mapped_column(
        ForeignKey("signers.id", ondelete="CASCADE"),
        nullable=False, index=True, comment="Owning signer"
    )

    type: Mapped[FieldType] = mapped_column(
        SQLEnum(FieldType, native_enum=False, length=24), nullable=False
    )
    label: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    page: Mapped[int] = mapped_column(Integer, nullable=False)
    x: Mapped[float] = mapped_column(Float, nullable=False)
    y: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[float] = mapped_column(Float, nullable=False)
    height: Mapped[float] = mapped_column(Float, nullable=False)

    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    filled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    envelope: Mapped["Envelope"] = relationship("Envelope", back_populates="fields")
    signer: Mapped["Signer"] = relationship("Signer", back_populates="fields")

    __table_args__ = (
        Index('idx_field_signer_required', 'signer_id', 'required'),
    )

    def __repr__(self):
        return f"<Field(id={self.id}, type={self.type}, signer_id={self.signer_id})>"
