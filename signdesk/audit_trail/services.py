## signdesk/audit_trail/services.py

# Standard library imports
import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

# Third party imports
from sqlalchemy.ext.asyncio import AsyncSession

# Local imports
from signdesk.utils.logger import get_logger
from signdesk.audit_trail.models import AuditLog
from signdesk.audit_trail.repository import AuditTrailRepository
from signdesk.audit_trail.schemas import (
    AuditAction, VerificationPurpose, RequestContext, SYSTEM_CONTEXT,
    AuditLogResponse, AuditSignerInfo, AuditTrailResponse,
    AuditCertificate, CertificateActor, CertificateEvent, CertificateSigner,
    ProjectionReport,
)
from signdesk.envelopes.schemas import EnvelopeStatus
from signdesk.signers.schemas import SignerStatus

logger = get_logger(__name__)

OWNER_ACTIONS = {
    AuditAction.CREATED,
    AuditAction.SIGNER_ADDED,
    AuditAction.SENT,
    AuditAction.RENAMED,
    AuditAction.DUE_DATE_CHANGED,
    AuditAction.CANCELLED,
}

ACTION_LABELS = {
    AuditAction.CREATED: "Document created",
    AuditAction.SIGNER_ADDED: "Signer added",
    AuditAction.SENT: "Document sent for signature",
    AuditAction.VIEWED: "Document viewed",
    AuditAction.PHONE_VERIFIED: "Phone number verified",
    AuditAction.FIELD_FILLED: "Field filled",
    AuditAction.SIGNED: "Document signed",
    AuditAction.DECLINED: "Signature declined",
    AuditAction.COMPLETED: "All signatures completed",
    AuditAction.CANCELLED: "Document cancelled",
    AuditAction.EXPIRED: "Document expired",
    AuditAction.RENAMED: "Document renamed",
    AuditAction.DUE_DATE_CHANGED: "Due date changed",
    AuditAction.REMINDER_SENT: "Reminder sent",
}

ENVELOPE_TRANSITIONS = {
    AuditAction.CREATED: EnvelopeStatus.DRAFT,
    AuditAction.SENT: EnvelopeStatus.PENDING,
    AuditAction.COMPLETED: EnvelopeStatus.COMPLETED,
    AuditAction.CANCELLED: EnvelopeStatus.CANCELLED,
    AuditAction.EXPIRED: EnvelopeStatus.EXPIRED,
}


@dataclass
class ReplayedState:
    """Statuses reconstructed from an ordered list of entries"""
    envelope_status: EnvelopeStatus = EnvelopeStatus.DRAFT
    signer_statuses: Dict[int, SignerStatus] = field(default_factory=dict)


def replay(entries: Iterable[AuditLog]) -> ReplayedState:
    """
    Re-derive the envelope status and every signer's status from the
    ordered entries alone.
    """
    state = ReplayedState()
    for entry in entries:
        action = AuditAction(entry.action)

        if action in ENVELOPE_TRANSITIONS:
            state.envelope_status = ENVELOPE_TRANSITIONS[action]
            continue

        signer_id = entry.signer_id
        if signer_id is None:
            continue
        current = state.signer_statuses.get(signer_id, SignerStatus.PENDING)

        if action == AuditAction.SIGNER_ADDED:
            state.signer_statuses[signer_id] = SignerStatus.PENDING
        elif action == AuditAction.VIEWED and current == SignerStatus.PENDING:
            state.signer_statuses[signer_id] = SignerStatus.VIEWED
        elif action == AuditAction.PHONE_VERIFIED:
            purpose = (entry.details or {}).get("purpose")
            if purpose == VerificationPurpose.DOCUMENT_ACCESS.value and current == SignerStatus.VIEWED:
                state.signer_statuses[signer_id] = SignerStatus.VERIFIED
        elif action == AuditAction.SIGNED:
            state.signer_statuses[signer_id] = SignerStatus.SIGNED
        elif action == AuditAction.DECLINED:
            state.signer_statuses[signer_id] = SignerStatus.DECLINED
    return state


def certificate_id_for(envelope_id: int, document_hash: str) -> str:
    """Short certificate reference derived from the envelope and its document."""
    digest = hashlib.md5(f"{envelope_id}{document_hash}".encode("utf-8")).hexdigest().upper()
    return f"{digest[:8]}-{digest[8:12]}-{digest[12:16]}"


class AuditTrailService:
    """Service for audit trail operations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = AuditTrailRepository(db)

    async def append(
        self,
        envelope_id: int,
        action: AuditAction,
        signer_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> AuditLog:
        """
        Record one fact inside the caller's transaction.
        Errors propagate so the enclosing transition is rolled back.
        """
        entry = AuditLog(
            envelope_id=envelope_id,
            signer_id=signer_id,
            action=action,
            details=details or {},
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        await self.repo.add(entry)
        logger.info(
            "Audit entry appended",
            envelope_id=envelope_id, signer_id=signer_id, action=action.value,
        )
        return entry

    async def list_by_envelope(self, envelope_id: int) -> List[AuditLog]:
        """Get the ordered trail of an envelope"""
        return await self.repo.list_by_envelope(envelope_id)

    async def list_audit_trail(self, envelope_id: int) -> AuditTrailResponse:
        """Ordered trail joined with signer display data"""
        entries = await self.repo.list_by_envelope(envelope_id)
        results = []
        for entry in entries:
            signer_info = None
            if entry.signer is not None:
                signer_info = AuditSignerInfo(
                    id=entry.signer.id,
                    name=entry.signer.name,
                    email=entry.signer.email,
                    color=entry.signer.color,
                )
            results.append(
                AuditLogResponse(
                    id=entry.id,
                    envelope_id=entry.envelope_id,
                    signer_id=entry.signer_id,
                    action=entry.action,
                    details=entry.details or {},
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    timestamp=entry.timestamp,
                    signer=signer_info,
                )
            )
        return AuditTrailResponse(envelope_id=envelope_id, results=results, total=len(results))

    async def count_action(self, envelope_id: int, action: AuditAction) -> int:
        return await self.repo.count_by_action(envelope_id, action)

    async def verify_projection(self, envelope) -> ProjectionReport:
        """
        Compare the cached statuses of a loaded envelope and its signers
        with the statuses replayed from its trail.
        """
        state = replay(await self.repo.list_by_envelope(envelope.id))

        mismatches = {}
        for signer in envelope.signers:
            replayed = state.signer_statuses.get(signer.id, SignerStatus.PENDING)
            if replayed != signer.status:
                mismatches[signer.id] = {
                    "stored": SignerStatus(signer.status).value,
                    "replayed": replayed.value,
                }

        stored_status = EnvelopeStatus(envelope.status)
        consistent = stored_status == state.envelope_status and not mismatches
        if not consistent:
            logger.warning(
                "Cached statuses disagree with the audit trail",
                envelope_id=envelope.id,
                stored=stored_status.value,
                replayed=state.envelope_status.value,
                signer_mismatches=mismatches,
            )
        return ProjectionReport(
            envelope_id=envelope.id,
            consistent=consistent,
            stored_envelope_status=stored_status.value,
            replayed_envelope_status=state.envelope_status.value,
            signer_mismatches=mismatches,
        )

    async def build_certificate(self, envelope) -> AuditCertificate:
        """Structured audit certificate of a loaded envelope"""
        entries = await self.repo.list_by_envelope(envelope.id)
        owner = envelope.owner
        signers_by_id = {signer.id: signer for signer in envelope.signers}

        events = []
        for entry in entries:
            action = AuditAction(entry.action)
            signer = signers_by_id.get(entry.signer_id) if entry.signer_id else None
            if signer is not None:
                actor = CertificateActor(type="signer", email=signer.email, name=signer.name)
            elif action in OWNER_ACTIONS:
                actor = CertificateActor(type="owner", email=owner.email_address, name=owner.display_name)
            else:
                actor = CertificateActor(type="system")

            details = {"ip": entry.ip_address, "user_agent": entry.user_agent}
            details.update(entry.details or {})
            events.append(
                CertificateEvent(
                    timestamp=entry.timestamp,
                    action=ACTION_LABELS.get(action, action.value),
                    actor=actor,
                    details={k: v for k, v in details.items() if v is not None},
                )
            )

        report = await self.verify_projection(envelope)
        return AuditCertificate(
            envelope_id=envelope.id,
            certificate_id=certificate_id_for(envelope.id, envelope.document_hash),
            document_name=envelope.name,
            document_hash=envelope.document_hash,
            created_at=envelope.created_on,
            completed_at=envelope.completed_at,
            owner_email=owner.email_address,
            owner_name=owner.display_name,
            signers=[
                CertificateSigner(
                    email=signer.email,
                    name=signer.name,
                    status=SignerStatus(signer.status).value,
                    signed_at=signer.signed_at,
                    ip_address=signer.ip_address,
                    user_agent=signer.user_agent,
                )
                for signer in envelope.signers
            ],
            events=events,
            projection_consistent=report.consistent,
        )
