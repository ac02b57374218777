# signdesk/signers/services.py

"""
Signer State Machine.
Resolves signing tokens and drives pending -> viewed -> [verified] -> signed,
with declined reachable from every non-terminal state.
"""

from typing import Mapping, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.audit_trail.schemas import AuditAction, RequestContext, SYSTEM_CONTEXT
from signdesk.audit_trail.services import AuditTrailService
from signdesk.core.config import settings
from signdesk.core.db import get_async_db
from signdesk.core.exceptions import (
    ForbiddenException, InvalidStateException, NotFoundException,
    ValidationFailedException,
)
from signdesk.core.jwt import access_grant_cookie_name, verify_access_grant
from signdesk.core.transactions import TransactionalService
from signdesk.envelopes.models import Envelope
from signdesk.envelopes.projection import EnvelopeProjector
from signdesk.envelopes.schemas import (
    EnvelopeStatus, EnvelopeSummary, SignerEnvelopeView, SigningOrder, SignResult,
)
from signdesk.fields.models import Field
from signdesk.fields.schemas import FieldResponse
from signdesk.fields.services import FieldStore, missing_required
from signdesk.notifications.dispatcher import NotificationDispatcher, get_notification_dispatcher
from signdesk.notifications.schemas import NotificationKind
from signdesk.otp.utils import mask_phone_for_display
from signdesk.signers.models import Signer
from signdesk.signers.repository import SignerRepository
from signdesk.signers.schemas import (
    ACTIVE_SIGNER_STATUSES, TERMINAL_SIGNER_STATUSES,
    SignerResponse, SignerStatus,
)
from signdesk.signers.utils import generate_signature_hash, is_token_expired
from signdesk.utils.general import utcnow
from signdesk.utils.logger import get_logger
from signdesk.utils.s3_utils import S3Utils, get_storage

logger = get_logger(__name__)

# Envelope statuses in which a signer link shows nothing but the status
CLOSED_ENVELOPE_STATUSES = frozenset({
    EnvelopeStatus.CANCELLED, EnvelopeStatus.EXPIRED, EnvelopeStatus.COMPLETED,
})


def lower_order_unsigned(envelope: Envelope, signer: Signer) -> list:
    """Co-signers with a strictly lower order who have not signed yet"""
    return [
        other for other in envelope.signers
        if other.order < signer.order and other.status != SignerStatus.SIGNED
    ]


def requires_phone_verification(signer: Signer) -> bool:
    return bool(signer.phone_2fa_required) and not signer.phone_verified


class SignerService(TransactionalService):
    """
    Service layer for everything a signer does through a signing link.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_async_db),
        dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
        storage: S3Utils = Depends(get_storage),
    ):
        super().__init__(db, dispatcher)
        self.repo = SignerRepository(db)
        self.audit = AuditTrailService(db)
        self.fields = FieldStore(db)
        self.projector = EnvelopeProjector(db, self.audit)
        self.storage = storage

    # === Token resolution ===

    async def resolve_token(self, token: str) -> Signer:
        """
        Find the signer behind a token. Unknown, expired and not yet sent
        links all fail the same way.
        """
        signer = await self.repo.get_by_token(token)
        if (
            signer is None
            or is_token_expired(signer.token_expires_at)
            or signer.envelope.status == EnvelopeStatus.DRAFT
        ):
            raise NotFoundException("Signer")
        return signer

    def ensure_can_act(self, envelope: Envelope, signer: Signer, operation: str) -> None:
        """
        Preconditions shared by field writes and signing.

        Raises:
            InvalidStateException: envelope or signer status forbids the operation
            ForbiddenException: phone not verified, or an earlier signer has not signed
        """
        envelope_status = EnvelopeStatus(envelope.status)
        if envelope_status != EnvelopeStatus.PENDING:
            raise InvalidStateException(envelope_status.value, operation)

        signer_status = SignerStatus(signer.status)
        if signer_status not in ACTIVE_SIGNER_STATUSES:
            reason = "open the document first" if signer_status == SignerStatus.PENDING else None
            raise InvalidStateException(signer_status.value, operation, reason)

        if requires_phone_verification(signer):
            raise ForbiddenException(
                "Phone verification is required before signing",
                {"signer_id": signer.id},
            )

        if envelope.signing_order == SigningOrder.SEQUENTIAL:
            waiting_on = lower_order_unsigned(envelope, signer)
            if waiting_on:
                raise ForbiddenException(
                    "Earlier signers must sign first",
                    {"waiting_on_orders": sorted(other.order for other in waiting_on)},
                )

    # === Signer view ===

    async def get_signer_view(
        self,
        token: str,
        cookies: Optional[Mapping[str, str]] = None,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> SignerEnvelopeView:
        """
        What the signer sees when opening the link.

        The first successful access moves the signer from pending to viewed.
        Cancelled, expired and completed envelopes report their status without
        field data. A phone-gated signer sees fields and the document only once
        verified or holding a valid access grant cookie for this envelope.
        """

        async def operation() -> SignerEnvelopeView:
            signer = await self.resolve_token(token)
            envelope = signer.envelope
            await self.projector.expire_if_due(envelope)

            envelope_status = EnvelopeStatus(envelope.status)
            if envelope_status == EnvelopeStatus.PENDING and signer.status == SignerStatus.PENDING:
                now = utcnow()
                signer.status = SignerStatus.VIEWED
                signer.viewed_at = now
                await self.audit.append(
                    envelope.id, AuditAction.VIEWED, signer_id=signer.id, context=context,
                )
                await self.projector.recompute(envelope, context, now=now)
                logger.info("Signer viewed envelope", envelope_id=envelope.id, signer_id=signer.id)

            access_grant = (cookies or {}).get(access_grant_cookie_name(envelope.slug))
            gated = requires_phone_verification(signer) and not verify_access_grant(
                access_grant, envelope.slug, signer.id
            )
            closed = envelope_status in CLOSED_ENVELOPE_STATUSES
            show_document = not gated and not closed and signer.status not in TERMINAL_SIGNER_STATUSES

            document_url = None
            fields = []
            if show_document:
                document_url = self.storage.presign(
                    envelope.document_key, settings.document_url_ttl_seconds
                )
                fields = [FieldResponse.model_validate(field) for field in signer.fields]

            masked_phone = None
            if signer.phone_2fa_required and signer.phone_2fa_number:
                masked_phone = mask_phone_for_display(signer.phone_2fa_number)

            return SignerEnvelopeView(
                signer=SignerResponse.model_validate(signer),
                envelope=EnvelopeSummary.model_validate(envelope),
                verification_required=gated,
                masked_phone=masked_phone,
                document_url=document_url,
                fields=fields,
            )

        return await self.run_transition("view", operation)

    # === Field writes ===

    async def record_field_value(
        self,
        token: str,
        field_id: int,
        value: Optional[str],
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> Field:
        """
        Write a value into one of the signer's own fields.
        Touches the signer row so that signing serializes against the write.
        """

        async def operation() -> Field:
            signer = await self.resolve_token(token)
            envelope = signer.envelope
            await self.projector.expire_if_due(envelope)
            self.ensure_can_act(envelope, signer, "fill a field")

            field = await self.fields.repo.get_by_id(field_id)
            if field is None or field.envelope_id != envelope.id:
                raise NotFoundException("Field", str(field_id))
            if field.signer_id != signer.id:
                raise ForbiddenException(
                    "This field belongs to another signer", {"field_id": field_id}
                )

            await self.fields.record_value(field, value)
            signer.last_field_at = field.filled_at
            await self.audit.append(
                envelope.id, AuditAction.FIELD_FILLED, signer_id=signer.id,
                details={"field_id": field.id, "field_type": field.type.value},
                context=context,
            )
            return field

        field = await self.run_transition("fill field", operation)
        logger.info("Field value recorded", field_id=field.id, signer_id=field.signer_id)
        return field

    # === Terminal transitions ===

    async def mark_signed(self, token: str, context: RequestContext = SYSTEM_CONTEXT) -> SignResult:
        """
        {viewed, verified} -> signed.

        Requires every required field filled, a verified phone when gated and,
        in sequential mode, every lower order signer already signed. The
        envelope completes in the same transaction as the last signature.
        """

        async def operation() -> SignResult:
            signer = await self.resolve_token(token)
            envelope = signer.envelope
            await self.projector.expire_if_due(envelope)
            self.ensure_can_act(envelope, signer, "sign")

            missing = missing_required(signer.fields)
            if missing:
                raise ValidationFailedException(
                    f"Please fill all required fields ({len(missing)} remaining)",
                    {"unfilled_fields": [field.id for field in missing]},
                )

            now = utcnow()
            signer.status = SignerStatus.SIGNED
            signer.signed_at = now
            signer.ip_address = context.ip_address
            signer.user_agent = context.user_agent
            signature_hash = generate_signature_hash(
                envelope.document_hash, signer.id, signer.email, now,
                context.ip_address, context.user_agent,
            )
            await self.audit.append(
                envelope.id, AuditAction.SIGNED, signer_id=signer.id,
                details={
                    "email": signer.email,
                    "signature_hash": signature_hash,
                    "fields_count": len(signer.fields),
                },
                context=context,
            )

            new_status = await self.projector.recompute(envelope, context, now=now)
            payload = self._notification_payload(envelope, signer)
            self.notify(envelope.owner_id, NotificationKind.SIGNED, payload)
            if new_status == EnvelopeStatus.COMPLETED:
                self._notify_completed(envelope)

            return SignResult(
                signer_id=signer.id,
                status=SignerStatus.SIGNED,
                signed_at=now,
                envelope_status=EnvelopeStatus(envelope.status),
                envelope_completed=envelope.status == EnvelopeStatus.COMPLETED,
            )

        result = await self.run_transition("sign", operation)
        logger.info(
            "Signer signed", signer_id=result.signer_id, envelope_status=result.envelope_status.value,
        )
        return result

    async def decline(
        self,
        token: str,
        reason: Optional[str] = None,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> SignResult:
        """
        Refuse to sign. Whether the envelope is cancelled follows its decline policy.
        """

        async def operation() -> SignResult:
            signer = await self.resolve_token(token)
            envelope = signer.envelope
            await self.projector.expire_if_due(envelope)

            envelope_status = EnvelopeStatus(envelope.status)
            if envelope_status != EnvelopeStatus.PENDING:
                raise InvalidStateException(envelope_status.value, "decline")
            if signer.status in TERMINAL_SIGNER_STATUSES:
                raise InvalidStateException(SignerStatus(signer.status).value, "decline")

            now = utcnow()
            reason_text = reason.strip() if reason and reason.strip() else None
            signer.status = SignerStatus.DECLINED
            signer.declined_at = now
            signer.decline_reason = reason_text
            signer.ip_address = context.ip_address
            signer.user_agent = context.user_agent
            await self.audit.append(
                envelope.id, AuditAction.DECLINED, signer_id=signer.id,
                details={"email": signer.email, "reason": reason_text},
                context=context,
            )
            await self.projector.recompute(envelope, context, now=now, cause_signer_id=signer.id)

            payload = self._notification_payload(envelope, signer)
            payload["reason"] = reason_text
            self.notify(envelope.owner_id, NotificationKind.REJECTED, payload)

            return SignResult(
                signer_id=signer.id,
                status=SignerStatus.DECLINED,
                declined_at=now,
                envelope_status=EnvelopeStatus(envelope.status),
                envelope_completed=False,
            )

        result = await self.run_transition("decline", operation)
        logger.info(
            "Signer declined", signer_id=result.signer_id, envelope_status=result.envelope_status.value,
        )
        return result

    # === Notifications ===

    def _notification_payload(self, envelope: Envelope, signer: Signer) -> dict:
        return {
            "envelope_id": envelope.id,
            "envelope_slug": envelope.slug,
            "envelope_name": envelope.name,
            "signer_email": signer.email,
            "signer_name": signer.name,
        }

    def _notify_completed(self, envelope: Envelope) -> None:
        """Owner gets one completion notice; every signer gets the completion email"""
        base = {
            "envelope_id": envelope.id,
            "envelope_slug": envelope.slug,
            "envelope_name": envelope.name,
        }
        self.notify(envelope.owner_id, NotificationKind.COMPLETED, dict(base))
        for signer in envelope.signers:
            self.notify(
                None, NotificationKind.COMPLETED,
                {**base, "recipient_email": signer.email, "recipient_name": signer.name},
            )
