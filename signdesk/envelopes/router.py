# signdesk/envelopes/router.py

"""
FastAPI router for owner operations on envelopes.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from signdesk.audit_trail.schemas import AuditCertificate, AuditTrailResponse, ProjectionReport
from signdesk.core.exceptions import SignDeskBaseException, convert_to_http_exception
from signdesk.envelopes.schemas import (
    EnvelopeCreate, EnvelopeDueDate, EnvelopeFieldsCreate, EnvelopeListResponse,
    EnvelopeRename, EnvelopeResponse, EnvelopeSendResult, EnvelopeStatus,
)
from signdesk.envelopes.services import EnvelopeService
from signdesk.fields.schemas import FieldResponse
from signdesk.signers.schemas import SignerCreate, SignerResponse
from signdesk.users.models import User
from signdesk.users.utils import get_current_user
from signdesk.utils.general import get_request_context
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Envelopes"], prefix="/envelopes")


def _unexpected(action: str, e: Exception) -> HTTPException:
    logger.error(f"Unexpected error while trying to {action}: {str(e)}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": f"Failed to {action}", "error": str(e)}
    )


# ===================== Drafting =====================

@router.post("", response_model=EnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_envelope(
    envelope_data: EnvelopeCreate,
    request: Request,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """
    Create a draft envelope around an uploaded document.
    Signers may be given now or added until the envelope is sent.
    """
    try:
        logger.info("Creating envelope", user_id=current_user.id, name=envelope_data.name)
        return await envelope_service.create_envelope(
            current_user, envelope_data, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.error(f"Failed to create envelope: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("create envelope", e) from e


@router.post("/{envelope_id}/signers", response_model=SignerResponse, status_code=status.HTTP_201_CREATED)
async def add_signer(
    envelope_id: int,
    signer_data: SignerCreate,
    request: Request,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Invite a signer to a draft envelope"""
    try:
        return await envelope_service.add_signer(
            envelope_id, current_user, signer_data, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.error(f"Failed to add signer: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("add signer", e) from e


@router.post("/{envelope_id}/fields", response_model=List[FieldResponse], status_code=status.HTTP_201_CREATED)
async def add_fields(
    envelope_id: int,
    fields_data: EnvelopeFieldsCreate,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Place fields for the signers of a draft envelope"""
    try:
        return await envelope_service.add_fields(envelope_id, current_user, fields_data)
    except SignDeskBaseException as e:
        logger.error(f"Failed to add fields: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("add fields", e) from e


@router.post("/{envelope_id}/send", response_model=EnvelopeSendResult)
async def send_envelope(
    envelope_id: int,
    request: Request,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """
    Send the envelope for signature.
    Returns the signing links; every signer is also invited by email.
    """
    try:
        return await envelope_service.send_envelope(
            envelope_id, current_user, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.error(f"Failed to send envelope: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("send envelope", e) from e


# ===================== Reads =====================

@router.get("", response_model=EnvelopeListResponse)
async def list_envelopes(
    status_filter: Optional[EnvelopeStatus] = Query(None, alias="status"),
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """List the current user's envelopes"""
    try:
        envelopes = await envelope_service.list_envelopes(current_user, status_filter)
        return EnvelopeListResponse(
            items=[EnvelopeResponse.model_validate(envelope) for envelope in envelopes],
            total=len(envelopes),
        )
    except SignDeskBaseException as e:
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("list envelopes", e) from e


@router.get("/{envelope_id}", response_model=EnvelopeResponse)
async def get_envelope(
    envelope_id: int,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Get one envelope with its signers and fields"""
    try:
        return await envelope_service.get_envelope(envelope_id, current_user)
    except SignDeskBaseException as e:
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("get envelope", e) from e


# ===================== Side-channel edits =====================

@router.patch("/{envelope_id}/name", response_model=EnvelopeResponse)
async def rename_envelope(
    envelope_id: int,
    body: EnvelopeRename,
    request: Request,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Rename an envelope"""
    try:
        return await envelope_service.rename_envelope(
            envelope_id, current_user, body.name, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.error(f"Failed to rename envelope: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("rename envelope", e) from e


@router.patch("/{envelope_id}/due-date", response_model=EnvelopeResponse)
async def set_due_date(
    envelope_id: int,
    body: EnvelopeDueDate,
    request: Request,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Move or clear the expiry date"""
    try:
        return await envelope_service.set_due_date(
            envelope_id, current_user, body.expires_at, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.error(f"Failed to change due date: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("change due date", e) from e


@router.post("/{envelope_id}/cancel", response_model=EnvelopeResponse)
async def cancel_envelope(
    envelope_id: int,
    request: Request,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Cancel an envelope. Irreversible."""
    try:
        return await envelope_service.cancel_envelope(
            envelope_id, current_user, context=get_request_context(request)
        )
    except SignDeskBaseException as e:
        logger.error(f"Failed to cancel envelope: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("cancel envelope", e) from e


@router.delete("/{envelope_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_envelope(
    envelope_id: int,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Delete an envelope with its signers, fields and audit trail"""
    try:
        await envelope_service.delete_envelope(envelope_id, current_user)
    except SignDeskBaseException as e:
        logger.error(f"Failed to delete envelope: {e.message}", error_details=e.details)
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("delete envelope", e) from e


# ===================== Audit trail =====================

@router.get("/{envelope_id}/audit-trail", response_model=AuditTrailResponse)
async def list_audit_trail(
    envelope_id: int,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Ordered history of the envelope"""
    try:
        return await envelope_service.list_audit_trail(envelope_id, current_user)
    except SignDeskBaseException as e:
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("load audit trail", e) from e


@router.get("/{envelope_id}/audit-trail/verify", response_model=ProjectionReport)
async def verify_audit_trail(
    envelope_id: int,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Replay the audit trail and compare it with the stored statuses"""
    try:
        return await envelope_service.verify_projection(envelope_id, current_user)
    except SignDeskBaseException as e:
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("verify audit trail", e) from e


@router.get("/{envelope_id}/certificate", response_model=AuditCertificate)
async def get_certificate(
    envelope_id: int,
    envelope_service: EnvelopeService = Depends(),
    current_user: User = Depends(get_current_user),
):
    """Audit certificate of the envelope"""
    try:
        return await envelope_service.build_certificate(envelope_id, current_user)
    except SignDeskBaseException as e:
        raise convert_to_http_exception(e) from e
    except Exception as e:
        raise _unexpected("build certificate", e) from e
