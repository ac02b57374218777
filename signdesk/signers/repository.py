# signdesk/signers/repository.py

"""
Data Access Layer for signers.
"""

from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from signdesk.envelopes.models import Envelope
from signdesk.signers.models import Signer


class SignerRepository:
    """
    Repository for Signer rows.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, signer: Signer) -> Signer:
        """Create a new signer"""
        self.db.add(signer)
        await self.db.flush()
        await self.db.refresh(signer)
        return signer

    async def get_by_token(self, token: str) -> Optional[Signer]:
        """
        Resolve a token to its signer. The envelope is loaded with every
        signer, every signer's fields and the envelope's fields, so nothing
        reached from the returned signer needs a lazy load.
        """
        stmt = (
            select(Envelope)
            .join(Signer, Signer.envelope_id == Envelope.id)
            .where(Signer.token == token)
            .options(
                selectinload(Envelope.signers).selectinload(Signer.fields),
                selectinload(Envelope.fields),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        envelope = result.unique().scalar_one_or_none()
        if envelope is None:
            return None

        signer = None
        for candidate in envelope.signers:
            # populate_existing resets the many-to-one side; pin it to the loaded row
            set_committed_value(candidate, "envelope", envelope)
            if candidate.token == token:
                signer = candidate
        return signer

    async def get_by_id(self, signer_id: int) -> Optional[Signer]:
        stmt = select(Signer).where(Signer.id == signer_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_envelope(self, envelope_id: int) -> List[Signer]:
        stmt = select(Signer).where(Signer.envelope_id == envelope_id).order_by(Signer.order)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def token_exists(self, token: str) -> bool:
        stmt = select(Signer.id).where(Signer.token == token)
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def purge_envelope(self, envelope_id: int) -> int:
        """Hard delete every signer of an envelope"""
        stmt = (
            delete(Signer)
            .where(Signer.envelope_id == envelope_id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.db.execute(stmt)
        return result.rowcount
