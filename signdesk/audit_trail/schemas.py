## signdesk/audit_trail/schemas.py

# Standard library imports
from enum import Enum as PyEnum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

# Third party imports
from pydantic import BaseModel, ConfigDict


class AuditAction(str, PyEnum):
    """Audit trail actions"""
    CREATED = "created"
    SIGNER_ADDED = "signer_added"
    SENT = "sent"
    VIEWED = "viewed"
    PHONE_VERIFIED = "phone_verified"
    FIELD_FILLED = "field_filled"
    SIGNED = "signed"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    RENAMED = "renamed"
    DUE_DATE_CHANGED = "due_date_changed"
    REMINDER_SENT = "reminder_sent"


class VerificationPurpose(str, PyEnum):
    """Why a phone number is being verified"""
    FIELD_VERIFICATION = "field_verification"
    DOCUMENT_ACCESS = "document_access"


@dataclass(frozen=True)
class RequestContext:
    """Requester details recorded alongside each audit entry"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


SYSTEM_CONTEXT = RequestContext()


class AuditSignerInfo(BaseModel):
    """Signer display data joined onto an entry"""
    id: int
    name: Optional[str] = None
    email: str
    color: str


class AuditLogResponse(BaseModel):
    """Audit trail response"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    envelope_id: int
    signer_id: Optional[int] = None
    action: AuditAction
    details: Dict[str, Any] = {}
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime
    signer: Optional[AuditSignerInfo] = None


class AuditTrailResponse(BaseModel):
    """Ordered history of one envelope"""
    envelope_id: int
    results: List[AuditLogResponse]
    total: int


class CertificateActor(BaseModel):
    """Who performed a certificate event"""
    type: str
    email: Optional[str] = None
    name: Optional[str] = None


class CertificateEvent(BaseModel):
    """One rendered entry of the audit certificate"""
    timestamp: datetime
    action: str
    actor: CertificateActor
    details: Dict[str, Any] = {}


class CertificateSigner(BaseModel):
    """Signer summary on the audit certificate"""
    email: str
    name: Optional[str] = None
    status: str
    signed_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditCertificate(BaseModel):
    """Audit certificate for an envelope"""
    envelope_id: int
    certificate_id: str
    document_name: str
    document_hash: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    owner_email: str
    owner_name: Optional[str] = None
    signers: List[CertificateSigner]
    events: List[CertificateEvent]
    projection_consistent: bool


class ProjectionReport(BaseModel):
    """Stored statuses compared with the statuses replayed from the trail"""
    envelope_id: int
    consistent: bool
    stored_envelope_status: str
    replayed_envelope_status: str
    signer_mismatches: Dict[int, Dict[str, str]] = {}
