# signdesk/fields/repository.py

"""
Data Access Layer for document fields.
"""

from typing import List, Optional

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.fields.models import Field


class FieldRepository:
    """
    Repository for Field rows.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, field: Field) -> Field:
        """Create a new field"""
        self.db.add(field)
        await self.db.flush()
        await self.db.refresh(field)
        return field

    async def get_by_id(self, field_id: int) -> Optional[Field]:
        """Get a field by ID"""
        stmt = select(Field).where(Field.id == field_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_signer(self, field_id: int, signer_id: int) -> Optional[Field]:
        """Get a field only if it belongs to the given signer"""
        stmt = select(Field).where(Field.id == field_id, Field.signer_id == signer_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_envelope(self, envelope_id: int) -> List[Field]:
        stmt = select(Field).where(Field.envelope_id == envelope_id).order_by(Field.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_by_envelope(self, envelope_id: int) -> int:
        stmt = select(func.count(Field.id)).where(Field.envelope_id == envelope_id)
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def purge_envelope(self, envelope_id: int) -> int:
        """Hard delete every field of an envelope"""
        stmt = (
            delete(Field)
            .where(Field.envelope_id == envelope_id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.db.execute(stmt)
        return result.rowcount
