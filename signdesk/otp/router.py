# signdesk/otp/router.py

"""
FastAPI router for phone verification on a signing link.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from signdesk.audit_trail.schemas import VerificationPurpose
from signdesk.core.config import settings
from signdesk.core.exceptions import SignDeskBaseException, convert_to_signer_http_exception
from signdesk.core.jwt import access_grant_cookie_name
from signdesk.otp.schemas import (
    ChallengeCheck, ChallengeCheckResponse, ChallengeRequest, ChallengeResponse,
)
from signdesk.otp.services import OTPGate
from signdesk.utils.general import get_request_context
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Phone verification"], prefix="/sign")


@router.post("/{token}/otp/request", response_model=ChallengeResponse)
async def request_challenge(
    token: str,
    body: ChallengeRequest,
    gate: OTPGate = Depends(),
):
    """Text a verification code. Returns the masked number only."""
    try:
        return await gate.request_challenge(token, body.purpose, body.phone, body.field_id)
    except SignDeskBaseException as e:
        logger.warning(f"Verification request rejected: {e.message}", purpose=body.purpose.value)
        raise convert_to_signer_http_exception(e) from e
    except Exception as e:
        logger.error(f"Unexpected error requesting verification code: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to send verification code"}
        ) from e


@router.post("/{token}/otp/verify", response_model=ChallengeCheckResponse)
async def check_challenge(
    token: str,
    body: ChallengeCheck,
    request: Request,
    response: Response,
    gate: OTPGate = Depends(),
):
    """
    Check a code. Document access verification sets the envelope-scoped
    access grant cookie.
    """
    try:
        outcome = await gate.check_challenge(
            token, body.code, body.purpose, body.phone, body.field_id,
            context=get_request_context(request),
        )
    except SignDeskBaseException as e:
        logger.warning(f"Verification rejected: {e.message}", purpose=body.purpose.value)
        raise convert_to_signer_http_exception(e) from e
    except Exception as e:
        logger.error(f"Unexpected error checking verification code: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to verify code"}
        ) from e

    if outcome.purpose == VerificationPurpose.DOCUMENT_ACCESS and outcome.access_grant:
        response.set_cookie(
            key=access_grant_cookie_name(outcome.envelope_slug),
            value=outcome.access_grant,
            max_age=settings.access_grant_expire_hours * 3600,
            httponly=True,
            secure=settings.environment == "production",
            samesite="lax",
        )
    return ChallengeCheckResponse(verified=True, purpose=outcome.purpose)
