## signdesk/core/jwt.py

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt, ExpiredSignatureError
from fastapi import HTTPException, status

from signdesk.core.config import settings
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)

ACCESS_GRANT_SCOPE = "document_access"

# --- JWT Token Management ---

def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
):
    """Create an access token"""
    try:
        to_encode = data.copy()
        if expires_delta:
            expire = datetime.now(timezone.utc) + expires_delta
        else:
            expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
        to_encode.update({"exp": expire})
        encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
        return encoded_jwt
    except Exception as e:
        logger.error("Error creating access token", error_message=str(e))
        raise e


def verify_token(token: str):
    """Verify a token"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except ExpiredSignatureError as ese:
        logger.error("Token has expired.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from ese
    except JWTError as e:
        logger.error("Error verifying token", error_message=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials.",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


# --- Access grants issued by the OTP gate ---

def access_grant_cookie_name(envelope_slug: str) -> str:
    """Cookie holding the access grant for one envelope."""
    return f"otp_verified_{envelope_slug}"


def create_access_grant(
    envelope_slug: str,
    signer_id: Optional[int] = None,
    phone: Optional[str] = None,
) -> str:
    """
    Creates a short lived access grant scoped to one envelope and optionally
    one signer. Independent of the owner session token.
    """
    try:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.access_grant_expire_hours)
        to_encode = {
            "exp": expire,
            "sub": envelope_slug,
            "signer_id": signer_id,
            "phone": phone,
            "verified": True,
            "scope": ACCESS_GRANT_SCOPE,
        }
        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    except Exception as e:
        logger.error("Error creating access grant", error_message=str(e))
        raise e


def verify_access_grant(
    token: Optional[str],
    envelope_slug: str,
    signer_id: Optional[int] = None,
) -> bool:
    """
    Returns True when the grant is valid, unexpired and scoped to this envelope
    (and to this signer when the grant names one).
    """
    if not token:
        return False
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        # ExpiredSignatureError is a JWTError too
        return False
    if payload.get("scope") != ACCESS_GRANT_SCOPE or payload.get("sub") != envelope_slug:
        return False
    granted_signer = payload.get("signer_id")
    if granted_signer is not None and signer_id is not None and granted_signer != signer_id:
        return False
    return True
