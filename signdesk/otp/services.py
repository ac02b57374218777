# signdesk/otp/services.py

"""
OTP Gate: proves phone possession before a signer may see a gated document
or before a phone field counts as verified.
"""

import asyncio
from typing import Optional, Tuple

import redis
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.audit_trail.schemas import (
    AuditAction, RequestContext, SYSTEM_CONTEXT, VerificationPurpose,
)
from signdesk.core.config import settings
from signdesk.core.db import get_async_db
from signdesk.core.exceptions import (
    ForbiddenException, InvalidStateException, NotFoundException,
    UpstreamFailureException, ValidationFailedException, VerificationFailedException,
)
from signdesk.core.jwt import create_access_grant
from signdesk.core.redis import get_redis_db
from signdesk.envelopes.schemas import EnvelopeStatus
from signdesk.fields.models import Field
from signdesk.fields.schemas import FieldType
from signdesk.notifications.dispatcher import NotificationDispatcher, get_notification_dispatcher
from signdesk.otp.provider import PinpointOTPProvider, get_otp_provider, otp_reference_id
from signdesk.otp.rate_limit import RateLimiter, rate_limit_key
from signdesk.otp.schemas import ChallengeOutcome, ChallengeResponse
from signdesk.otp.utils import format_phone, mask_phone_for_audit, mask_phone_for_display
from signdesk.signers.models import Signer
from signdesk.signers.schemas import ACTIVE_SIGNER_STATUSES, SignerStatus
from signdesk.signers.services import SignerService
from signdesk.utils.general import utcnow
from signdesk.utils.logger import get_logger
from signdesk.utils.s3_utils import S3Utils, get_storage

logger = get_logger(__name__)


class OTPGate:
    """
    Challenge/response over an external SMS provider, scoped to one signing link.
    The provider owns code generation, delivery and lifetime.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_async_db),
        redis_client: redis.Redis = Depends(get_redis_db),
        provider: PinpointOTPProvider = Depends(get_otp_provider),
        dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
        storage: S3Utils = Depends(get_storage),
    ):
        self.db = db
        self.provider = provider
        self.rate_limiter = RateLimiter(redis_client)
        self.signers = SignerService(db, dispatcher, storage)
        self.timeout = settings.otp_provider_timeout_seconds

    # === Preconditions ===

    async def _resolve(
        self, token: str, purpose: VerificationPurpose, phone: Optional[str], field_id: Optional[int]
    ) -> Tuple[Signer, str, Optional[Field]]:
        """
        Resolve the link and check that this verification makes sense now.

        Returns:
            The signer, the canonical phone number and, for field verification, the field
        """
        signer = await self.signers.resolve_token(token)
        envelope = signer.envelope
        await self.signers.projector.expire_if_due(envelope)

        if purpose == VerificationPurpose.DOCUMENT_ACCESS:
            envelope_status = EnvelopeStatus(envelope.status)
            if envelope_status != EnvelopeStatus.PENDING:
                raise InvalidStateException(envelope_status.value, "verify phone")
            if not signer.phone_2fa_required or not signer.phone_2fa_number:
                raise InvalidStateException(
                    SignerStatus(signer.status).value, "verify phone",
                    "phone verification is not enabled for this signer",
                )
            if signer.status not in ACTIVE_SIGNER_STATUSES:
                reason = "open the document first" if signer.status == SignerStatus.PENDING else None
                raise InvalidStateException(SignerStatus(signer.status).value, "verify phone", reason)
            canonical = signer.phone_2fa_number
            if phone and format_phone(phone) != canonical:
                raise ForbiddenException("Phone number does not match the one on file")
            return signer, canonical, None

        if not phone:
            raise ValidationFailedException("Phone number required", {"field": "phone"})
        if field_id is None:
            raise ValidationFailedException("A field is required for field verification", {"field": "field_id"})
        canonical = format_phone(phone)
        self.signers.ensure_can_act(envelope, signer, "verify a phone field")

        field = await self.signers.fields.repo.get_by_id(field_id)
        if field is None or field.envelope_id != envelope.id:
            raise NotFoundException("Field", str(field_id))
        if field.signer_id != signer.id:
            raise ForbiddenException("This field belongs to another signer", {"field_id": field_id})
        if field.type != FieldType.PHONE:
            raise ValidationFailedException("Only phone fields can be verified", {"field_id": field_id})
        return signer, canonical, field

    # === Challenge ===

    async def request_challenge(
        self,
        token: str,
        purpose: VerificationPurpose,
        phone: Optional[str] = None,
        field_id: Optional[int] = None,
    ) -> ChallengeResponse:
        """
        Send a code to the phone. Rate limited per (purpose, phone) before the
        provider is called.

        Raises:
            RateLimitedException: too many requests inside the window
            UpstreamFailureException: the provider failed or timed out
        """
        signer, canonical, _ = await self._resolve(token, purpose, phone, field_id)
        self.rate_limiter.hit(rate_limit_key(purpose.value, canonical))

        reference_id = otp_reference_id(purpose.value, signer.envelope.slug, signer.id)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.provider.send, canonical, reference_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Verification code request timed out", signer_id=signer.id, purpose=purpose.value)
            raise UpstreamFailureException("Verification provider timed out") from e

        logger.info("Verification challenge sent", signer_id=signer.id, purpose=purpose.value)
        return ChallengeResponse(
            masked_phone=mask_phone_for_display(canonical),
            expires_in=settings.otp_validity_minutes * 60,
        )

    async def check_challenge(
        self,
        token: str,
        code: str,
        purpose: VerificationPurpose,
        phone: Optional[str] = None,
        field_id: Optional[int] = None,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> ChallengeOutcome:
        """
        Verify a code. On success exactly one `phone_verified` entry is written
        with the masked and canonical number; a wrong code writes nothing.

        document_access: the signer becomes verified and an access grant is issued.
        field_verification: the phone field gets its value and `verified_at`.

        Raises:
            VerificationFailedException: wrong or expired code, provider error or timeout
        """
        signer, canonical, _ = await self._resolve(token, purpose, phone, field_id)
        envelope_slug = signer.envelope.slug
        signer_id = signer.id

        reference_id = otp_reference_id(purpose.value, envelope_slug, signer_id)
        try:
            valid = await asyncio.wait_for(
                asyncio.to_thread(self.provider.check, canonical, code, reference_id),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Verification check timed out", signer_id=signer_id, purpose=purpose.value)
            raise VerificationFailedException() from e
        if not valid:
            logger.info("Verification code rejected", signer_id=signer_id, purpose=purpose.value)
            raise VerificationFailedException()

        async def operation() -> ChallengeOutcome:
            signer, _, field = await self._resolve(token, purpose, phone, field_id)
            envelope = signer.envelope
            now = utcnow()
            details = {
                "phone": mask_phone_for_audit(canonical),
                "canonical_phone": canonical,
                "purpose": purpose.value,
                "verified_at": now.isoformat(),
            }

            if purpose == VerificationPurpose.DOCUMENT_ACCESS:
                signer.phone_verified = True
                if signer.status == SignerStatus.VIEWED:
                    signer.status = SignerStatus.VERIFIED
                    signer.verified_at = now
                await self.signers.audit.append(
                    envelope.id, AuditAction.PHONE_VERIFIED, signer_id=signer.id,
                    details=details, context=context,
                )
                await self.signers.projector.recompute(envelope, context, now=now)
                grant = create_access_grant(envelope.slug, signer.id, canonical)
                return ChallengeOutcome(purpose, envelope.slug, canonical, grant)

            await self.signers.fields.record_value(field, canonical)
            await self.signers.fields.mark_verified(field)
            signer.last_field_at = now
            details["field_id"] = field.id
            await self.signers.audit.append(
                envelope.id, AuditAction.PHONE_VERIFIED, signer_id=signer.id,
                details=details, context=context,
            )
            return ChallengeOutcome(purpose, envelope.slug, canonical)

        outcome = await self.signers.run_transition("verify phone", operation)
        logger.info("Phone verified", signer_id=signer_id, purpose=purpose.value)
        return outcome
