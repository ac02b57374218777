# signdesk/signers/schemas.py

"""
Pydantic schemas for the signers module
"""

from datetime import datetime
from typing import Optional
from enum import Enum as PyEnum

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# === Enums ===

class SignerStatus(str, PyEnum):
    """Signer status enum."""
    PENDING = "pending"
    VIEWED = "viewed"
    VERIFIED = "verified"
    SIGNED = "signed"
    DECLINED = "declined"


TERMINAL_SIGNER_STATUSES = frozenset({SignerStatus.SIGNED, SignerStatus.DECLINED})

# Statuses from which a signer may fill fields or sign
ACTIVE_SIGNER_STATUSES = frozenset({SignerStatus.VIEWED, SignerStatus.VERIFIED})


# === Signer Schemas ===

class SignerCreate(BaseModel):
    """Schema for inviting a signer."""
    email: EmailStr
    name: Optional[str] = Field(None, max_length=255)
    order: int = Field(..., ge=0)
    phone_2fa_required: bool = False
    phone_2fa_number: Optional[str] = Field(None, max_length=32)


class SignerResponse(BaseModel):
    """Signer data for owners and for the signer itself."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str] = None
    color: str
    order: int
    status: SignerStatus
    viewed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    phone_2fa_required: bool
    phone_verified: bool


class FieldValueRequest(BaseModel):
    """Value written into one field by its signer."""
    value: str = Field(..., max_length=100_000)


class DeclineRequest(BaseModel):
    """Optional reason given when refusing to sign."""
    reason: Optional[str] = Field(None, max_length=1000)
