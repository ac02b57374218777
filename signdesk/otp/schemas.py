# signdesk/otp/schemas.py

"""
Pydantic schemas for the OTP gate
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field

from signdesk.audit_trail.schemas import VerificationPurpose


class ChallengeRequest(BaseModel):
    """Ask for a code. The phone may be omitted when the signer has one on file."""
    purpose: VerificationPurpose
    phone: Optional[str] = Field(None, max_length=32)
    field_id: Optional[int] = None


class ChallengeResponse(BaseModel):
    """Where the code went; never the code itself."""
    masked_phone: str
    expires_in: int


class ChallengeCheck(BaseModel):
    """Submit a received code."""
    purpose: VerificationPurpose
    code: str = Field(..., min_length=4, max_length=10)
    phone: Optional[str] = Field(None, max_length=32)
    field_id: Optional[int] = None


class ChallengeCheckResponse(BaseModel):
    """Result of a successful check."""
    verified: bool
    purpose: VerificationPurpose


@dataclass
class ChallengeOutcome:
    """Service result; the access grant only exists for document access"""
    purpose: VerificationPurpose
    envelope_slug: str
    canonical_phone: str
    access_grant: Optional[str] = None
