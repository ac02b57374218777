# signdesk/envelopes/projection.py

"""
Keeps the cached envelope status in step with its signers and the clock.
Every status change is written together with the audit entry that records it.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.audit_trail.schemas import AuditAction, RequestContext, SYSTEM_CONTEXT
from signdesk.audit_trail.services import AuditTrailService
from signdesk.envelopes.models import Envelope
from signdesk.envelopes.schemas import EnvelopeStatus
from signdesk.envelopes.utils import project_envelope_status
from signdesk.utils.general import utcnow
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)


class EnvelopeProjector:
    """
    Recomputes and persists the envelope status projection.
    The envelope must be loaded with its signers.
    """

    def __init__(self, db: AsyncSession, audit: Optional[AuditTrailService] = None):
        self.db = db
        self.audit = audit or AuditTrailService(db)

    def touch(self, envelope: Envelope) -> None:
        """Dirty the row so its version column is checked and bumped on flush"""
        envelope.updated_on = utcnow()

    async def recompute(
        self,
        envelope: Envelope,
        context: RequestContext = SYSTEM_CONTEXT,
        now: Optional[datetime] = None,
        cause_signer_id: Optional[int] = None,
    ) -> Optional[EnvelopeStatus]:
        """
        Touch the envelope and apply the derived status.

        Returns:
            The new status if it changed, None otherwise
        """
        now = now or utcnow()
        self.touch(envelope)

        derived = project_envelope_status(envelope, now=now)
        current = EnvelopeStatus(envelope.status)
        if derived == current:
            return None

        envelope.status = derived
        if derived == EnvelopeStatus.COMPLETED:
            envelope.completed_at = now
            await self.audit.append(
                envelope.id, AuditAction.COMPLETED,
                details={"total_signers": len(envelope.signers)},
                context=context,
            )
        elif derived == EnvelopeStatus.CANCELLED:
            envelope.cancelled_at = envelope.cancelled_at or now
            details = {"reason": "declined"}
            if cause_signer_id is not None:
                details["declined_by"] = cause_signer_id
            await self.audit.append(
                envelope.id, AuditAction.CANCELLED, details=details, context=context,
            )
        elif derived == EnvelopeStatus.EXPIRED:
            expires_at = envelope.expires_at
            await self.audit.append(
                envelope.id, AuditAction.EXPIRED,
                details={"expires_at": expires_at.isoformat() if expires_at else None},
                context=SYSTEM_CONTEXT,
            )

        await self.db.flush()
        logger.info(
            "Envelope status changed",
            envelope_id=envelope.id, previous=current.value, status=derived.value,
        )
        return derived

    async def expire_if_due(self, envelope: Envelope, now: Optional[datetime] = None) -> bool:
        """
        Lazy expiry on read. Persists and commits the `expired` transition on
        its own so that it survives a rejected write that follows it.
        """
        if envelope.status != EnvelopeStatus.PENDING:
            return False
        if project_envelope_status(envelope, now=now) != EnvelopeStatus.EXPIRED:
            return False
        await self.recompute(envelope, now=now)
        await self.db.commit()
        return True


