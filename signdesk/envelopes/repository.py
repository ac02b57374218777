# signdesk/envelopes/repository.py

"""
Data Access Layer for envelopes.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from signdesk.envelopes.models import Envelope
from signdesk.envelopes.schemas import EnvelopeStatus


class EnvelopeRepository:
    """
    Repository for Envelope rows. Reads load the signers and fields.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _with_children(self, stmt):
        return stmt.options(
            selectinload(Envelope.signers),
            selectinload(Envelope.fields),
        ).execution_options(populate_existing=True)

    async def create(self, envelope: Envelope) -> Envelope:
        """Create a new envelope"""
        self.db.add(envelope)
        await self.db.flush()
        return envelope

    async def get_by_id(self, envelope_id: int) -> Optional[Envelope]:
        """Get an envelope by ID"""
        stmt = self._with_children(select(Envelope).where(Envelope.id == envelope_id))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> Optional[Envelope]:
        stmt = self._with_children(select(Envelope).where(Envelope.slug == slug))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def slug_exists(self, slug: str) -> bool:
        stmt = select(Envelope.id).where(Envelope.slug == slug)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def list_by_owner(
        self, owner_id: int, status: Optional[EnvelopeStatus] = None
    ) -> List[Envelope]:
        """Envelopes of one owner, newest first"""
        stmt = select(Envelope).where(Envelope.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(Envelope.status == status)
        stmt = self._with_children(stmt.order_by(Envelope.id.desc()))
        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all())

    async def list_expired_pending_ids(self, now: datetime) -> List[int]:
        """Pending envelopes whose expiry instant has passed"""
        stmt = select(Envelope.id).where(
            and_(
                Envelope.status == EnvelopeStatus.PENDING,
                Envelope.expires_at.is_not(None),
                Envelope.expires_at <= now,
            )
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_reminder_candidate_ids(self) -> List[int]:
        """Pending envelopes with reminders switched on"""
        stmt = select(Envelope.id).where(
            Envelope.status == EnvelopeStatus.PENDING,
            Envelope.reminder_enabled.is_(True),
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_by_id(self, envelope_id: int) -> int:
        """Hard delete the envelope row itself; children must already be gone"""
        stmt = (
            delete(Envelope)
            .where(Envelope.id == envelope_id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.db.execute(stmt)
        return result.rowcount
