"""SQL implementation of the share link repository."""

from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plexdonate.domain.model import ShareLink
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.repository import ShareLinkRepository
from plexdonate.domain.value import DonorId, ProspectId, ShareLinkId
from plexdonate.persistence.mappers import row_to_share_link
from plexdonate.persistence.tables import invite_links_table


class SqlShareLinkRepository(ShareLinkRepository):
    """SQLAlchemy Core implementation of ShareLinkRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        token: str,
        donor_id: DonorId | None = None,
        prospect_id: ProspectId | None = None,
    ) -> ShareLink:
        if (donor_id is None) == (prospect_id is None):
            raise ValueError("A share link belongs to exactly one donor or prospect")
        created_at = utcnow()
        try:
            result = await self.session.execute(
                insert(invite_links_table).values(
                    token=token,
                    donor_id=donor_id,
                    prospect_id=prospect_id,
                    created_at=created_at,
                )
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        return ShareLink(
            id=ShareLinkId(result.inserted_primary_key[0]),
            token=token,
            donor_id=donor_id,
            prospect_id=prospect_id,
            created_at=created_at,
        )

    async def _find_one(self, criteria) -> Optional[ShareLink]:
        result = await self.session.execute(select(invite_links_table).where(criteria))
        row = result.mappings().first()
        return row_to_share_link(dict(row)) if row else None

    async def find_by_donor(self, donor_id: DonorId) -> Optional[ShareLink]:
        return await self._find_one(invite_links_table.c.donor_id == donor_id)

    async def find_by_token(self, token: str) -> Optional[ShareLink]:
        return await self._find_one(invite_links_table.c.token == token)
