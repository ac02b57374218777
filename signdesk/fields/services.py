# signdesk/fields/services.py

"""
Field Store: placement, value validation and storage of per-signer fields.
No transition logic lives here; callers check envelope and signer state.
"""

from typing import Iterable, List, Optional

from dateutil import parser as date_parser
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.core.exceptions import (
    InvalidStateException, NotFoundException, ValidationFailedException,
)
from signdesk.envelopes.schemas import EnvelopeStatus
from signdesk.fields.models import Field
from signdesk.fields.repository import FieldRepository
from signdesk.fields.schemas import FieldCreate, FieldType
from signdesk.otp.utils import format_phone
from signdesk.utils.general import is_blank, utcnow
from signdesk.utils.logger import get_logger

logger = get_logger(__name__)

CHECKBOX_VALUES = {"true", "false"}


def normalize_field_value(field_type: FieldType, value: Optional[str]) -> str:
    """
    Validate a submitted value against its field type and return the form
    that is stored.

    Raises:
        ValidationFailedException: if the value does not fit the type
    """
    if value is None:
        raise ValidationFailedException("A value is required", {"field_type": field_type.value})

    if field_type == FieldType.CHECKBOX:
        normalized = value.strip().lower()
        if normalized not in CHECKBOX_VALUES:
            raise ValidationFailedException(
                "Checkbox value must be 'true' or 'false'", {"field_type": field_type.value}
            )
        return normalized

    if is_blank(value):
        raise ValidationFailedException("A value is required", {"field_type": field_type.value})

    if field_type == FieldType.DATE:
        try:
            return date_parser.isoparse(value.strip()).date().isoformat()
        except (ValueError, OverflowError) as e:
            raise ValidationFailedException(
                "Date value must be an ISO 8601 date", {"field_type": field_type.value}
            ) from e

    if field_type == FieldType.PHONE:
        return format_phone(value)

    if field_type == FieldType.TEXT:
        return value.strip()

    return value


def is_field_filled(field: Field) -> bool:
    """A checkbox counts as filled only when ticked"""
    if field.type == FieldType.CHECKBOX:
        return field.value == "true"
    return not is_blank(field.value)


def missing_required(fields: Iterable[Field]) -> List[Field]:
    """Required fields of a signer that still have no usable value"""
    return [field for field in fields if field.required and not is_field_filled(field)]


class FieldStore:
    """
    Service layer for field operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = FieldRepository(db)

    async def add_field(self, envelope, signer, data: FieldCreate) -> Field:
        """
        Place a field for one signer. Only allowed while the envelope is a draft.
        """
        if envelope.status != EnvelopeStatus.DRAFT:
            raise InvalidStateException(
                EnvelopeStatus(envelope.status).value, "add fields",
                "fields can only be placed on a draft",
            )
        if signer is None or signer.envelope_id != envelope.id:
            raise NotFoundException("Signer", str(data.signer_id))

        field = Field(
            envelope_id=envelope.id,
            signer_id=signer.id,
            type=data.type,
            label=data.label,
            page=data.page,
            x=data.x,
            y=data.y,
            width=data.width,
            height=data.height,
            required=data.required,
        )
        field = await self.repo.create(field)
        logger.info(
            "Field added",
            envelope_id=envelope.id, signer_id=signer.id, field_id=field.id, type=data.type.value,
        )
        return field

    async def get_signer_field(self, field_id: int, signer_id: int) -> Field:
        """Field owned by the signer, or NotFound"""
        field = await self.repo.get_for_signer(field_id, signer_id)
        if field is None:
            raise NotFoundException("Field", str(field_id))
        return field

    async def record_value(self, field: Field, value: Optional[str]) -> Field:
        """Store a validated value. A changed phone number loses its verification."""
        normalized = normalize_field_value(FieldType(field.type), value)
        if field.type == FieldType.PHONE and field.value != normalized:
            field.verified_at = None
        field.value = normalized
        field.filled_at = utcnow()
        await self.db.flush()
        return field

    async def mark_verified(self, field: Field) -> Field:
        """Record that the phone in this field passed verification"""
        field.verified_at = utcnow()
        await self.db.flush()
        return field

    async def count_by_envelope(self, envelope_id: int) -> int:
        return await self.repo.count_by_envelope(envelope_id)

    async def purge_envelope(self, envelope_id: int) -> int:
        return await self.repo.purge_envelope(envelope_id)
