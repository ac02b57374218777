### signdesk/utils/general.py

# Standard library imports
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

# Third party imports
from fastapi import Request

# Local imports
from signdesk.audit_trail.schemas import RequestContext

URL_SAFE_ALPHABET = string.ascii_letters + string.digits


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from the store as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_random_string(length: int) -> str:
    """Random string over [0-9A-Za-z] drawn from the system CSPRNG."""
    return "".join(secrets.choice(URL_SAFE_ALPHABET) for _ in range(length))


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def get_request_context(request: Request) -> RequestContext:
    """Requester IP and user agent, as recorded in the audit trail"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.headers.get("x-real-ip") or (request.client.host if request.client else None)
    return RequestContext(ip_address=ip_address, user_agent=request.headers.get("user-agent"))
