"""SQL implementation of Invite repository."""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plexdonate.domain.error import NotFoundError
from plexdonate.domain.model import Invite, InviteDraft
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.repository import InviteRepository
from plexdonate.domain.value import EXPIRABLE_STATUSES, DonorId, InviteId
from plexdonate.persistence.mappers import invite_to_dict, row_to_invite
from plexdonate.persistence.tables import donors_table, invites_table

# Columns an invite update may touch
_MUTABLE_COLUMNS = (
    "plex_invite_id",
    "invite_url",
    "invite_status",
    "invited_at",
    "plex_invited_at",
    "shared_libraries",
    "recipient_email",
    "plex_account_id",
    "plex_email",
    "note",
    "email_sent_at",
    "revoked_at",
    "plex_revoked_at",
)


class SqlInviteRepository(InviteRepository):
    """SQLAlchemy Core implementation of InviteRepository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def create(self, draft: InviteDraft) -> Invite:
        """Create an invite, revoking the donor's prior active invite.

        Raises:
            IntegrityError: If another writer inserted an active invite first
        """
        now = utcnow()
        values = draft.model_dump()
        values["shared_libraries"] = [
            library.model_dump() for library in draft.shared_libraries
        ]
        try:
            await self.session.execute(
                update(invites_table)
                .where(
                    and_(
                        invites_table.c.donor_id == draft.donor_id,
                        invites_table.c.revoked_at.is_(None),
                    )
                )
                .values(revoked_at=now)
            )
            result = await self.session.execute(
                insert(invites_table).values(**values, created_at=now)
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise

        invite_id = InviteId(result.inserted_primary_key[0])
        invite = await self.find_by_id(invite_id)
        if invite is None:
            raise NotFoundError("Invite", str(invite_id))
        return invite

    async def find_by_id(self, invite_id: InviteId) -> Optional[Invite]:
        stmt = select(invites_table).where(invites_table.c.id == invite_id)
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return row_to_invite(dict(row)) if row else None

    async def _latest(self, *criteria) -> Optional[Invite]:
        stmt = (
            select(invites_table)
            .where(*criteria)
            .order_by(invites_table.c.created_at.desc(), invites_table.c.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return row_to_invite(dict(row)) if row else None

    async def find_latest_for_donor(self, donor_id: DonorId) -> Optional[Invite]:
        return await self._latest(invites_table.c.donor_id == donor_id)

    async def find_latest_active_for_donor(self, donor_id: DonorId) -> Optional[Invite]:
        return await self._latest(
            invites_table.c.donor_id == donor_id,
            invites_table.c.revoked_at.is_(None),
        )

    async def update(self, invite: Invite) -> Invite:
        data = invite_to_dict(invite)
        values = {column: data[column] for column in _MUTABLE_COLUMNS}
        result = await self.session.execute(
            update(invites_table)
            .where(invites_table.c.id == invite.id)
            .values(**values)
        )
        await self.session.commit()
        if result.rowcount == 0:
            raise NotFoundError("Invite", str(invite.id))
        updated = await self.find_by_id(invite.id)
        if updated is None:
            raise NotFoundError("Invite", str(invite.id))
        return updated

    async def _set(self, invite_id: InviteId, **values) -> Optional[Invite]:
        result = await self.session.execute(
            update(invites_table).where(invites_table.c.id == invite_id).values(**values)
        )
        await self.session.commit()
        if result.rowcount == 0:
            return None
        return await self.find_by_id(invite_id)

    async def mark_email_sent(
        self, invite_id: InviteId, sent_at: datetime | None = None
    ) -> Invite:
        invite = await self._set(invite_id, email_sent_at=sent_at or utcnow())
        if invite is None:
            raise NotFoundError("Invite", str(invite_id))
        return invite

    async def revoke(self, invite_id: InviteId, revoked_at: datetime | None = None) -> None:
        await self._set(invite_id, revoked_at=revoked_at or utcnow())

    async def mark_plex_revoked(
        self, invite_id: InviteId, revoked_at: datetime | None = None
    ) -> Optional[Invite]:
        now = revoked_at or utcnow()
        return await self._set(
            invite_id,
            plex_revoked_at=now,
            revoked_at=func.coalesce(invites_table.c.revoked_at, now),
        )

    async def list_for_donor(self, donor_id: DonorId) -> list[Invite]:
        stmt = (
            select(invites_table)
            .where(invites_table.c.donor_id == donor_id)
            .order_by(invites_table.c.created_at.desc(), invites_table.c.id.desc())
        )
        result = await self.session.execute(stmt)
        return [row_to_invite(dict(row)) for row in result.mappings().all()]

    async def list_eligible_for_revocation(self, now: datetime) -> list[Invite]:
        stmt = (
            select(invites_table)
            .join(donors_table, donors_table.c.id == invites_table.c.donor_id)
            .where(
                invites_table.c.revoked_at.is_(None),
                donors_table.c.status.in_([status.value for status in EXPIRABLE_STATUSES]),
                donors_table.c.access_expires_at.is_not(None),
                donors_table.c.access_expires_at < now,
            )
            .order_by(invites_table.c.id)
        )
        result = await self.session.execute(stmt)
        return [row_to_invite(dict(row)) for row in result.mappings().all()]
