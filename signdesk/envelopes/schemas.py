# signdesk/envelopes/schemas.py

"""
Pydantic schemas for the envelopes module
"""

from datetime import datetime
from typing import List, Optional
from enum import Enum as PyEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from signdesk.fields.schemas import FieldCreate, FieldResponse
from signdesk.signers.schemas import SignerCreate, SignerResponse, SignerStatus


# === Enums ===

class EnvelopeStatus(str, PyEnum):
    """Envelope status enum."""
    DRAFT = "draft"
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_ENVELOPE_STATUSES = frozenset({
    EnvelopeStatus.COMPLETED, EnvelopeStatus.EXPIRED, EnvelopeStatus.CANCELLED,
})


class SigningOrder(str, PyEnum):
    """Whether signers must sign in ascending order."""
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class DeclinePolicy(str, PyEnum):
    """What a decline does to the rest of the envelope."""
    CANCEL_ENVELOPE = "cancel_envelope"
    CONTINUE = "continue"


# === Envelope Schemas ===

class EnvelopeCreate(BaseModel):
    """Schema for creating an envelope around an uploaded document."""
    name: str = Field(..., min_length=1, max_length=255)
    message: Optional[str] = Field(None, max_length=2000)
    document_key: str = Field(..., min_length=1, max_length=512)
    document_hash: str = Field(..., min_length=64, max_length=64)
    preview_key: Optional[str] = Field(None, max_length=512)
    signing_order: SigningOrder = SigningOrder.PARALLEL
    decline_policy: DeclinePolicy = DeclinePolicy.CANCEL_ENVELOPE
    expires_at: Optional[datetime] = None
    reminder_enabled: bool = False
    reminder_interval_days: int = Field(3, ge=1, le=30)
    signers: List[SignerCreate] = Field(default_factory=list)

    @field_validator("document_hash")
    @classmethod
    def validate_document_hash(cls, v: str) -> str:
        try:
            int(v, 16)
        except ValueError as e:
            raise ValueError("document_hash must be a hex encoded SHA-256 digest") from e
        return v.lower()


class EnvelopeRename(BaseModel):
    """Schema for renaming an envelope."""
    name: str = Field(..., min_length=1, max_length=255)


class EnvelopeDueDate(BaseModel):
    """Schema for changing the expiry instant. None removes the expiry."""
    expires_at: Optional[datetime] = None


class EnvelopeFieldsCreate(BaseModel):
    """Schema for placing fields on a draft envelope."""
    fields: List[FieldCreate] = Field(..., min_length=1)


class EnvelopeResponse(BaseModel):
    """Owner view of an envelope."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    message: Optional[str] = None
    status: EnvelopeStatus
    signing_order: SigningOrder
    decline_policy: DeclinePolicy
    document_key: str
    document_hash: str
    preview_key: Optional[str] = None
    expires_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    reminder_enabled: bool
    reminder_interval_days: int
    signers: List[SignerResponse] = Field(default_factory=list)
    fields: List[FieldResponse] = Field(default_factory=list)


class EnvelopeSummary(BaseModel):
    """Envelope data shown to a signer."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    message: Optional[str] = None
    status: EnvelopeStatus
    expires_at: Optional[datetime] = None


class SigningLink(BaseModel):
    """Signing link handed out when an envelope is sent."""
    signer_id: int
    email: str
    name: Optional[str] = None
    sign_url: str


class EnvelopeSendResult(BaseModel):
    """Response after sending an envelope."""
    envelope_id: int
    slug: str
    status: EnvelopeStatus
    signing_links: List[SigningLink]


class SignerEnvelopeView(BaseModel):
    """
    What a signer sees when opening a signing link.
    Fields and the document URL are withheld until a phone-gated signer verifies.
    """
    signer: SignerResponse
    envelope: EnvelopeSummary
    verification_required: bool = False
    masked_phone: Optional[str] = None
    document_url: Optional[str] = None
    fields: List[FieldResponse] = Field(default_factory=list)


class SignResult(BaseModel):
    """Response after a signer signs or declines."""
    signer_id: int
    status: SignerStatus
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    envelope_status: EnvelopeStatus
    envelope_completed: bool


class EnvelopeListResponse(BaseModel):
    """Envelopes owned by the current user."""
    items: List[EnvelopeResponse]
    total: int
