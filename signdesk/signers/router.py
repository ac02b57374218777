# signdesk/signers/router.py

"""
FastAPI router for signing links.
Every route is addressed by the opaque token; a link that does not resolve
always yields the same generic 404.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from signdesk.core.exceptions import SignDeskBaseException, convert_to_signer_http_exception
from signdesk.envelopes.schemas import SignerEnvelopeView, SignResult
from signdesk.fields.schemas import FieldResponse
from signdesk.signers.schemas import DeclineRequest, FieldValueRequest
from signdesk.signers.services import SignerService
from signdesk.utils.general import get_request_context
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Signing"], prefix="/sign")


@router.get("/{token}", response_model=SignerEnvelopeView)
async def get_signer_view(
    token: str,
    request: Request,
    signer_service: SignerService = Depends(),
):
    """
    Open a signing link. The first visit marks the signer as having viewed the document.
    """
    try:
        return await signer_service.get_signer_view(
            token, cookies=request.cookies, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.warning(f"Signing link rejected: {e.message}")
        raise convert_to_signer_http_exception(e) from e
    except Exception as e:
        logger.error(f"Unexpected error loading signing link: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to load signing page"}
        ) from e


@router.put("/{token}/fields/{field_id}", response_model=FieldResponse)
async def record_field_value(
    token: str,
    field_id: int,
    body: FieldValueRequest,
    request: Request,
    signer_service: SignerService = Depends(),
):
    """Fill one of the signer's own fields"""
    try:
        return await signer_service.record_field_value(
            token, field_id, body.value, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.warning(f"Field write rejected: {e.message}", field_id=field_id)
        raise convert_to_signer_http_exception(e) from e
    except Exception as e:
        logger.error(f"Unexpected error recording field value: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to record field value"}
        ) from e


@router.post("/{token}/complete", response_model=SignResult)
async def mark_signed(
    token: str,
    request: Request,
    signer_service: SignerService = Depends(),
):
    """
    Sign the document. All required fields must be filled, the phone verified
    when required, and earlier signers done in sequential mode.
    """
    try:
        return await signer_service.mark_signed(token, context=get_request_context(request))
    except SignDeskBaseException as e:
        logger.warning(f"Signing rejected: {e.message}", error_details=e.details)
        raise convert_to_signer_http_exception(e) from e
    except Exception as e:
        logger.error(f"Unexpected error signing: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to sign document"}
        ) from e


@router.post("/{token}/decline", response_model=SignResult)
async def decline(
    token: str,
    request: Request,
    body: Optional[DeclineRequest] = None,
    signer_service: SignerService = Depends(),
):
    """Refuse to sign, optionally with a reason"""
    try:
        reason = body.reason if body else None
        return await signer_service.decline(token, reason, context=get_request_context(request))
    except SignDeskBaseException as e:
        logger.warning(f"Decline rejected: {e.message}")
        raise convert_to_signer_http_exception(e) from e
    except Exception as e:
        logger.error(f"Unexpected error declining: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to decline document"}
        ) from e
