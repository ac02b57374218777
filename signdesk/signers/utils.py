# signdesk/signers/utils.py

"""
Utility functions for signers: color palette, access tokens, signature hash.
"""

import hashlib
from datetime import datetime, timedelta
from typing import Iterable, Optional

from signdesk.core.config import settings
from signdesk.utils.general import ensure_aware, generate_random_string, utcnow

SIGNER_PALETTE = [
    "#EF4444",
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EC4899",
    "#06B6D4",
    "#F97316",
]

TOKEN_LENGTH = 32


def next_signer_color(used_colors: Iterable[str]) -> str:
    """
    First palette color not yet taken on the envelope. Past exhaustion the
    palette cycles by the number of existing signers.
    """
    used = list(used_colors)
    for color in SIGNER_PALETTE:
        if color not in used:
            return color
    return SIGNER_PALETTE[len(used) % len(SIGNER_PALETTE)]


def generate_signer_token() -> str:
    """Opaque, unguessable signing capability"""
    return generate_random_string(TOKEN_LENGTH)


def token_expiry(now: Optional[datetime] = None, envelope_expires_at: Optional[datetime] = None) -> datetime:
    """
    Link lifetime from `now`. A link never dies before its envelope does, so
    the later of the default lifetime and the envelope expiry wins.
    """
    default = (now or utcnow()) + timedelta(days=settings.signer_token_expire_days)
    return extend_token_expiry(default, envelope_expires_at)


def extend_token_expiry(current: Optional[datetime], candidate: Optional[datetime]) -> Optional[datetime]:
    """The later of two expiry instants; None on either side is ignored"""
    current, candidate = ensure_aware(current), ensure_aware(candidate)
    if current is None:
        return candidate
    if candidate is None:
        return current
    return max(current, candidate)


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    expires_at = ensure_aware(expires_at)
    if expires_at is None:
        return False
    return expires_at <= (now or utcnow())


def generate_signature_hash(
    document_hash: str,
    signer_id: int,
    signer_email: str,
    signed_at: datetime,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> str:
    """SHA-256 binding the consent event to the document it was given on"""
    payload = "|".join([
        document_hash,
        str(signer_id),
        signer_email,
        ensure_aware(signed_at).isoformat(),
        ip_address or "",
        user_agent or "",
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
