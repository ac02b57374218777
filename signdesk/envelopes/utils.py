# signdesk/envelopes/utils.py

"""
Pure helpers for the envelope state machine.
"""

from datetime import datetime
from typing import Iterable, Optional

from signdesk.envelopes.schemas import EnvelopeStatus, DeclinePolicy
from signdesk.signers.schemas import SignerStatus
from signdesk.utils.general import ensure_aware, generate_random_string, utcnow

SLUG_LENGTH = 10


def generate_slug() -> str:
    """Public routing key for an envelope."""
    return generate_random_string(SLUG_LENGTH)


def derive_envelope_status(
    signer_statuses: Iterable[SignerStatus],
    *,
    sent_at: Optional[datetime],
    cancelled_at: Optional[datetime],
    expires_at: Optional[datetime],
    decline_policy: DeclinePolicy,
    now: Optional[datetime] = None,
) -> EnvelopeStatus:
    """
    Project the envelope status from its signers plus the clock.

    Order of precedence:
    1. cancelled by the owner
    2. draft until sent
    3. completed once every signer signed
    4. cancelled by a decline when the policy says so
    5. expired once the expiry instant has passed
    6. pending otherwise
    """
    statuses = list(signer_statuses)
    now = now or utcnow()

    if cancelled_at is not None:
        return EnvelopeStatus.CANCELLED
    if sent_at is None:
        return EnvelopeStatus.DRAFT
    if statuses and all(s == SignerStatus.SIGNED for s in statuses):
        return EnvelopeStatus.COMPLETED
    if decline_policy == DeclinePolicy.CANCEL_ENVELOPE and any(
        s == SignerStatus.DECLINED for s in statuses
    ):
        return EnvelopeStatus.CANCELLED
    expiry = ensure_aware(expires_at)
    if expiry is not None and expiry <= ensure_aware(now):
        return EnvelopeStatus.EXPIRED
    return EnvelopeStatus.PENDING


def project_envelope_status(envelope, now: Optional[datetime] = None) -> EnvelopeStatus:
    """`derive_envelope_status` applied to a loaded Envelope row."""
    return derive_envelope_status(
        (signer.status for signer in envelope.signers),
        sent_at=envelope.sent_at,
        cancelled_at=envelope.cancelled_at,
        expires_at=envelope.expires_at,
        decline_policy=envelope.decline_policy,
        now=now,
    )
