# signdesk/envelopes/services.py

"""
Business Logic Layer for envelopes.
Implements the owner side of the workflow: drafting, sending, side-channel
edits, cancellation, deletion, and the housekeeping sweeps.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.audit_trail.schemas import (
    AuditAction, AuditCertificate, AuditTrailResponse, ProjectionReport,
    RequestContext, SYSTEM_CONTEXT,
)
from signdesk.audit_trail.services import AuditTrailService
from signdesk.core.config import settings
from signdesk.core.db import get_async_db
from signdesk.core.exceptions import (
    ForbiddenException, InvalidStateException, NotFoundException,
    UpstreamFailureException, ValidationFailedException,
)
from signdesk.core.transactions import TransactionalService
from signdesk.envelopes.models import Envelope
from signdesk.envelopes.projection import EnvelopeProjector
from signdesk.envelopes.repository import EnvelopeRepository
from signdesk.envelopes.schemas import (
    EnvelopeCreate, EnvelopeFieldsCreate, EnvelopeSendResult, EnvelopeStatus,
    SigningLink, SigningOrder, TERMINAL_ENVELOPE_STATUSES,
)
from signdesk.envelopes.utils import generate_slug
from signdesk.fields.models import Field
from signdesk.fields.services import FieldStore
from signdesk.notifications.dispatcher import NotificationDispatcher, get_notification_dispatcher
from signdesk.notifications.schemas import NotificationKind
from signdesk.otp.utils import format_phone
from signdesk.signers.models import Signer
from signdesk.signers.repository import SignerRepository
from signdesk.signers.schemas import TERMINAL_SIGNER_STATUSES, SignerCreate, SignerStatus
from signdesk.signers.utils import (
    extend_token_expiry, generate_signer_token, next_signer_color, token_expiry,
)
from signdesk.users.models import User
from signdesk.utils.general import ensure_aware, utcnow
from signdesk.utils.logger import get_logger
from signdesk.utils.s3_utils import S3Utils, get_storage

logger = get_logger(__name__)

MAX_SLUG_ATTEMPTS = 5


def sign_url_for(token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/sign/{token}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = ensure_aware(value)
    return value.isoformat() if value else None


class EnvelopeService(TransactionalService):
    """
    Service layer for envelope operations.
    Handles business logic and orchestrates repository calls.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_async_db),
        dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
        storage: S3Utils = Depends(get_storage),
    ):
        super().__init__(db, dispatcher)
        self.repo = EnvelopeRepository(db)
        self.signer_repo = SignerRepository(db)
        self.audit = AuditTrailService(db)
        self.fields = FieldStore(db)
        self.projector = EnvelopeProjector(db, self.audit)
        self.storage = storage

    # === Lookups ===

    async def _get_owned(self, envelope_id: int, owner_id: int) -> Envelope:
        envelope = await self.repo.get_by_id(envelope_id)
        if envelope is None:
            raise NotFoundException("Envelope", str(envelope_id))
        if envelope.owner_id != owner_id:
            raise ForbiddenException(
                "You do not have access to this envelope", {"envelope_id": envelope_id}
            )
        return envelope

    def _ensure_draft(self, envelope: Envelope, operation: str) -> None:
        if envelope.status != EnvelopeStatus.DRAFT:
            raise InvalidStateException(EnvelopeStatus(envelope.status).value, operation)

    async def _unique_slug(self) -> str:
        for _ in range(MAX_SLUG_ATTEMPTS):
            slug = generate_slug()
            if not await self.repo.slug_exists(slug):
                return slug
        raise InvalidStateException("draft", "create envelope", "could not allocate a unique slug")

    async def _unique_token(self) -> str:
        for _ in range(MAX_SLUG_ATTEMPTS):
            token = generate_signer_token()
            if not await self.signer_repo.token_exists(token):
                return token
        raise InvalidStateException("draft", "add signer", "could not allocate a unique token")

    # === Drafting ===

    async def create_envelope(
        self, owner: User, data: EnvelopeCreate, context: RequestContext = SYSTEM_CONTEXT
    ) -> Envelope:
        """
        Create a draft around an uploaded document, with any initial signers.

        Raises:
            ValidationFailedException: expiry in the past, duplicate signer order, bad phone
        """
        owner_id = owner.id
        logger.info("Creating envelope", owner_id=owner_id, name=data.name)
        if data.expires_at is not None and ensure_aware(data.expires_at) <= utcnow():
            raise ValidationFailedException("Expiry date must be in the future", {"field": "expires_at"})

        async def operation() -> int:
            envelope = Envelope(
                slug=await self._unique_slug(),
                name=data.name,
                message=data.message,
                owner_id=owner_id,
                status=EnvelopeStatus.DRAFT,
                signing_order=data.signing_order,
                decline_policy=data.decline_policy,
                document_key=data.document_key,
                document_hash=data.document_hash,
                preview_key=data.preview_key,
                expires_at=data.expires_at,
                reminder_enabled=data.reminder_enabled,
                reminder_interval_days=data.reminder_interval_days,
                signers=[],
            )
            await self.repo.create(envelope)
            await self.audit.append(
                envelope.id, AuditAction.CREATED,
                details={"name": envelope.name, "document_hash": envelope.document_hash},
                context=context,
            )
            for signer_data in data.signers:
                await self._add_signer(envelope, signer_data, context)
            return envelope.id

        envelope_id = await self.run_transition("create envelope", operation)
        logger.info("Envelope created", envelope_id=envelope_id, owner_id=owner_id)
        return await self.repo.get_by_id(envelope_id)

    async def _add_signer(
        self, envelope: Envelope, data: SignerCreate, context: RequestContext
    ) -> Signer:
        self._ensure_draft(envelope, "add signers")
        if any(existing.order == data.order for existing in envelope.signers):
            raise ValidationFailedException(
                "Signer order must be unique within the envelope", {"order": data.order}
            )

        phone = None
        if data.phone_2fa_required:
            if not data.phone_2fa_number:
                raise ValidationFailedException(
                    "A phone number is required for phone verification", {"field": "phone_2fa_number"}
                )
            phone = format_phone(data.phone_2fa_number)

        signer = Signer(
            envelope_id=envelope.id,
            email=str(data.email).lower(),
            name=data.name,
            color=next_signer_color(existing.color for existing in envelope.signers),
            order=data.order,
            status=SignerStatus.PENDING,
            token=await self._unique_token(),
            token_expires_at=token_expiry(),
            phone_2fa_required=data.phone_2fa_required,
            phone_2fa_number=phone,
            phone_verified=False,
        )
        envelope.signers.append(signer)
        self.projector.touch(envelope)
        await self.db.flush()
        await self.audit.append(
            envelope.id, AuditAction.SIGNER_ADDED, signer_id=signer.id,
            details={"email": signer.email, "order": signer.order},
            context=context,
        )
        return signer

    async def add_signer(
        self, envelope_id: int, owner: User, data: SignerCreate,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> Signer:
        """Invite one more signer while the envelope is a draft"""
        owner_id = owner.id

        async def operation() -> Signer:
            envelope = await self._get_owned(envelope_id, owner_id)
            return await self._add_signer(envelope, data, context)

        signer = await self.run_transition("add signer", operation)
        logger.info("Signer added", envelope_id=envelope_id, signer_id=signer.id)
        return signer

    async def add_fields(
        self, envelope_id: int, owner: User, data: EnvelopeFieldsCreate
    ) -> List[Field]:
        """Place fields for the envelope's signers while it is a draft"""
        owner_id = owner.id

        async def operation() -> List[Field]:
            envelope = await self._get_owned(envelope_id, owner_id)
            self._ensure_draft(envelope, "add fields")
            signers = {signer.id: signer for signer in envelope.signers}
            created = []
            for field_data in data.fields:
                created.append(
                    await self.fields.add_field(envelope, signers.get(field_data.signer_id), field_data)
                )
            self.projector.touch(envelope)
            return created

        return await self.run_transition("add fields", operation)

    # === Sending ===

    async def send_envelope(
        self, envelope_id: int, owner: User, context: RequestContext = SYSTEM_CONTEXT
    ) -> EnvelopeSendResult:
        """
        draft -> pending. Needs at least one signer and one field; every
        signer gets an invitation once the transition is committed.
        """
        owner_id = owner.id
        sender = {"sender_email": owner.email_address, "sender_name": owner.display_name}

        async def operation() -> EnvelopeSendResult:
            envelope = await self._get_owned(envelope_id, owner_id)
            self._ensure_draft(envelope, "send")
            if not envelope.signers:
                raise InvalidStateException("draft", "send", "the envelope has no signers")
            if await self.fields.count_by_envelope(envelope.id) == 0:
                raise InvalidStateException("draft", "send", "the envelope has no fields")
            expires_at = ensure_aware(envelope.expires_at)
            now = utcnow()
            if expires_at is not None and expires_at <= now:
                raise ValidationFailedException("Expiry date must be in the future", {"field": "expires_at"})

            envelope.sent_at = now
            await self.audit.append(
                envelope.id, AuditAction.SENT,
                details={"signers_count": len(envelope.signers)},
                context=context,
            )
            await self.projector.recompute(envelope, context, now=now)

            links = []
            for signer in envelope.signers:
                signer.token_expires_at = token_expiry(now, envelope.expires_at)
                url = sign_url_for(signer.token)
                links.append(
                    SigningLink(signer_id=signer.id, email=signer.email, name=signer.name, sign_url=url)
                )
                self.notify(None, NotificationKind.INVITATION, {
                    "envelope_id": envelope.id,
                    "envelope_slug": envelope.slug,
                    "envelope_name": envelope.name,
                    "message": envelope.message,
                    "recipient_email": signer.email,
                    "recipient_name": signer.name,
                    **sender,
                    "sign_url": url,
                    "expires_at": _iso(envelope.expires_at),
                })

            return EnvelopeSendResult(
                envelope_id=envelope.id,
                slug=envelope.slug,
                status=EnvelopeStatus.PENDING,
                signing_links=links,
            )

        result = await self.run_transition("send envelope", operation)
        logger.info("Envelope sent", envelope_id=envelope_id, signers=len(result.signing_links))
        return result

    # === Reads ===

    async def get_envelope(self, envelope_id: int, owner: User) -> Envelope:
        """Owner view; a pending envelope past its expiry is expired on read"""
        owner_id = owner.id

        async def operation() -> Envelope:
            envelope = await self._get_owned(envelope_id, owner_id)
            await self.projector.expire_if_due(envelope)
            return envelope

        return await self.run_transition("get envelope", operation)

    async def list_envelopes(
        self, owner: User, status: Optional[EnvelopeStatus] = None
    ) -> List[Envelope]:
        """Envelopes of the owner, with lazy expiry applied to each"""
        owner_id = owner.id

        async def operation() -> List[Envelope]:
            envelopes = await self.repo.list_by_owner(owner_id)
            for envelope in envelopes:
                await self.projector.expire_if_due(envelope)
            if status is not None:
                envelopes = [envelope for envelope in envelopes if envelope.status == status]
            return envelopes

        return await self.run_transition("list envelopes", operation)

    # === Side-channel edits ===

    async def rename_envelope(
        self, envelope_id: int, owner: User, name: str,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> Envelope:
        """Change the display name; status is untouched"""
        if not name or not name.strip():
            raise ValidationFailedException("Name must not be blank", {"field": "name"})
        owner_id = owner.id

        async def operation() -> Envelope:
            envelope = await self._get_owned(envelope_id, owner_id)
            previous = envelope.name
            envelope.name = name.strip()
            self.projector.touch(envelope)
            await self.audit.append(
                envelope.id, AuditAction.RENAMED,
                details={"field": "name", "previous": previous, "value": envelope.name},
                context=context,
            )
            return envelope

        envelope = await self.run_transition("rename envelope", operation)
        logger.info("Envelope renamed", envelope_id=envelope_id, name=envelope.name)
        return envelope

    async def set_due_date(
        self, envelope_id: int, owner: User, expires_at: Optional[datetime],
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> Envelope:
        """
        Move or remove the expiry instant of a live envelope.

        Raises:
            InvalidStateException: the envelope is already terminal
            ValidationFailedException: the new instant is in the past
        """
        if expires_at is not None and ensure_aware(expires_at) <= utcnow():
            raise ValidationFailedException("Expiry date must be in the future", {"field": "expires_at"})
        owner_id = owner.id

        async def operation() -> Envelope:
            envelope = await self._get_owned(envelope_id, owner_id)
            await self.projector.expire_if_due(envelope)
            if envelope.status in TERMINAL_ENVELOPE_STATUSES:
                raise InvalidStateException(EnvelopeStatus(envelope.status).value, "change the due date")

            previous = _iso(envelope.expires_at)
            envelope.expires_at = expires_at
            if envelope.status == EnvelopeStatus.PENDING:
                for signer in envelope.signers:
                    signer.token_expires_at = extend_token_expiry(signer.token_expires_at, expires_at)
            self.projector.touch(envelope)
            await self.audit.append(
                envelope.id, AuditAction.DUE_DATE_CHANGED,
                details={"field": "expires_at", "previous": previous, "value": _iso(expires_at)},
                context=context,
            )
            return envelope

        envelope = await self.run_transition("set due date", operation)
        logger.info("Envelope due date changed", envelope_id=envelope_id, expires_at=_iso(expires_at))
        return envelope

    # === Cancellation and deletion ===

    async def cancel_envelope(
        self, envelope_id: int, owner: User, context: RequestContext = SYSTEM_CONTEXT
    ) -> Envelope:
        """
        Owner cancellation of a pending envelope; irreversible.
        A draft was never sent and is deleted instead.
        """
        owner_id = owner.id

        async def operation() -> Envelope:
            envelope = await self._get_owned(envelope_id, owner_id)
            await self.projector.expire_if_due(envelope)
            if envelope.status != EnvelopeStatus.PENDING:
                reason = "delete the draft instead" if envelope.status == EnvelopeStatus.DRAFT else None
                raise InvalidStateException(EnvelopeStatus(envelope.status).value, "cancel", reason)

            now = utcnow()
            envelope.cancelled_at = now
            envelope.status = EnvelopeStatus.CANCELLED
            self.projector.touch(envelope)
            await self.audit.append(
                envelope.id, AuditAction.CANCELLED,
                details={"reason": "cancelled_by_owner"},
                context=context,
            )
            return envelope

        envelope = await self.run_transition("cancel envelope", operation)
        logger.info("Envelope cancelled", envelope_id=envelope_id)
        return envelope

    async def delete_envelope(self, envelope_id: int, owner: User) -> None:
        """
        Hard purge: audit entries, fields, signers, then the envelope.
        Stored objects are removed afterwards; a failure there only leaks an object.
        """
        owner_id = owner.id

        async def operation() -> List[str]:
            envelope = await self._get_owned(envelope_id, owner_id)
            keys = [key for key in (envelope.document_key, envelope.preview_key) if key]
            await self.audit.repo.purge_envelope(envelope.id)
            await self.fields.purge_envelope(envelope.id)
            await self.signer_repo.purge_envelope(envelope.id)
            await self.repo.delete_by_id(envelope.id)
            return keys

        keys = await self.run_transition("delete envelope", operation)
        logger.info("Envelope deleted", envelope_id=envelope_id)

        for key in keys:
            try:
                self.storage.delete(key)
            except UpstreamFailureException as e:
                logger.warning(
                    "Could not delete stored object, leaving it orphaned",
                    envelope_id=envelope_id, key=key, error=e.message,
                )

    # === Audit trail ===

    async def list_audit_trail(self, envelope_id: int, owner: User) -> AuditTrailResponse:
        await self._get_owned(envelope_id, owner.id)
        return await self.audit.list_audit_trail(envelope_id)

    async def verify_projection(self, envelope_id: int, owner: User) -> ProjectionReport:
        envelope = await self.get_envelope(envelope_id, owner)
        return await self.audit.verify_projection(envelope)

    async def build_certificate(self, envelope_id: int, owner: User) -> AuditCertificate:
        envelope = await self.get_envelope(envelope_id, owner)
        return await self.audit.build_certificate(envelope)

    # === Housekeeping ===

    async def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """
        Expire every pending envelope past its expiry instant. Reads expire
        envelopes lazily anyway; the sweep only gets there first.
        """
        now = now or utcnow()
        expired = 0
        for envelope_id in await self.repo.list_expired_pending_ids(now):

            async def operation(envelope_id: int = envelope_id) -> bool:
                envelope = await self.repo.get_by_id(envelope_id)
                if envelope is None:
                    return False
                return await self.projector.expire_if_due(envelope, now=now)

            if await self.run_transition("sweep expired", operation):
                expired += 1
        logger.info("Expiry sweep finished", expired=expired)
        return expired

    async def send_reminders(self, now: Optional[datetime] = None) -> int:
        """
        Remind signers who can act now on pending envelopes whose reminder
        interval has elapsed since sending or the previous reminder.
        """
        now = now or utcnow()
        reminded = 0
        for envelope_id in await self.repo.list_reminder_candidate_ids():

            async def operation(envelope_id: int = envelope_id) -> bool:
                envelope = await self.repo.get_by_id(envelope_id)
                if envelope is None or await self.projector.expire_if_due(envelope, now=now):
                    return False
                if envelope.status != EnvelopeStatus.PENDING:
                    return False
                last = ensure_aware(envelope.last_reminder_at or envelope.sent_at)
                if last is not None and last + timedelta(days=envelope.reminder_interval_days) > now:
                    return False

                recipients = self._reminder_recipients(envelope)
                if not recipients:
                    return False
                for signer in recipients:
                    signer.token_expires_at = extend_token_expiry(
                        signer.token_expires_at, token_expiry(now, envelope.expires_at)
                    )
                    self.notify(None, NotificationKind.REMINDER, {
                        "envelope_id": envelope.id,
                        "envelope_slug": envelope.slug,
                        "envelope_name": envelope.name,
                        "recipient_email": signer.email,
                        "recipient_name": signer.name,
                        "sender_name": envelope.owner.display_name,
                        "sign_url": sign_url_for(signer.token),
                        "expires_at": _iso(envelope.expires_at),
                    })
                envelope.last_reminder_at = now
                self.projector.touch(envelope)
                await self.audit.append(
                    envelope.id, AuditAction.REMINDER_SENT,
                    details={"recipients": [signer.email for signer in recipients]},
                )
                return True

            if await self.run_transition("send reminders", operation):
                reminded += 1
        logger.info("Reminder run finished", envelopes=reminded)
        return reminded

    def _reminder_recipients(self, envelope: Envelope) -> List[Signer]:
        waiting = [
            signer for signer in envelope.signers
            if signer.status not in TERMINAL_SIGNER_STATUSES
        ]
        if envelope.signing_order != SigningOrder.SEQUENTIAL or not waiting:
            return waiting
        # Only the signers whose turn it is
        lowest = min(signer.order for signer in waiting)
        return [signer for signer in waiting if signer.order == lowest]
