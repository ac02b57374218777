# signdesk/audit_trail/repository.py

"""
Data Access Layer for the audit trail.
Inserts and ordered reads only; the purge is reserved for envelope deletion.
"""

from typing import List

from sqlalchemy import select, delete, asc, func
from sqlalchemy.ext.asyncio import AsyncSession

from signdesk.audit_trail.models import AuditLog
from signdesk.audit_trail.schemas import AuditAction


class AuditTrailRepository:
    """
    Repository for AuditLog rows.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, entry: AuditLog) -> AuditLog:
        """Insert one entry inside the caller's transaction."""
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def list_by_envelope(self, envelope_id: int) -> List[AuditLog]:
        """Entries of one envelope, oldest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.envelope_id == envelope_id)
            .order_by(asc(AuditLog.timestamp), asc(AuditLog.id))
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all())

    async def count_by_action(self, envelope_id: int, action: AuditAction) -> int:
        """Number of entries with the given action."""
        stmt = select(func.count(AuditLog.id)).where(
            AuditLog.envelope_id == envelope_id, AuditLog.action == action
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def purge_envelope(self, envelope_id: int) -> int:
        """Hard delete every entry of an envelope that is being deleted."""
        result = await self.db.execute(
            delete(AuditLog)
            .where(AuditLog.envelope_id == envelope_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
