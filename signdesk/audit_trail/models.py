## signdesk/audit_trail/models.py

# Standard library imports
from datetime import datetime
from typing import Optional

# Third party imports
from sqlalchemy import DateTime, ForeignKey, Index, String, JSON, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

# Local imports
from signdesk.core.db import Base
from signdesk.audit_trail.schemas import AuditAction
from signdesk.utils.general import utcnow


class AuditLog(Base):
    """Immutable fact about an envelope; rows are only ever inserted"""
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    envelope_id: Mapped[int] = mapped_column(
        ForeignKey("envelopes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    signer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("signers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    action: Mapped[AuditAction] = mapped_column(
        SQLEnum(AuditAction, native_enum=False, length=32), nullable=False, index=True
    )
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True, default=dict)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    signer = relationship("Signer", lazy="joined")

    __table_args__ = (
        Index('idx_audit_envelope_timestamp', 'envelope_id', 'timestamp'),
    )

    def __repr__(self):
        return f"<AuditLog(envelope_id={self.envelope_id}, action={self.action}, timestamp={self.timestamp})>"
