"""In-memory invite repository for testing."""

from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError

from plexdonate.domain.error import NotFoundError
from plexdonate.domain.model import Invite, InviteDraft
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.repository import InviteRepository
from plexdonate.domain.value import EXPIRABLE_STATUSES, DonorId, InviteId

from .database import InMemoryDatabase


class InMemoryInviteRepository(InviteRepository):
    """In-memory implementation of InviteRepository for testing."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self.db = database

    def _for_donor(self, donor_id: DonorId) -> list[Invite]:
        return sorted(
            (invite for invite in self.db.invites.values() if invite.donor_id == donor_id),
            key=lambda invite: (invite.created_at, invite.id),
            reverse=True,
        )

    async def create(self, draft: InviteDraft) -> Invite:
        if draft.donor_id not in self.db.donors:
            raise IntegrityError("Unknown donor", None, Exception())
        now = utcnow()
        for invite in self._for_donor(draft.donor_id):
            if invite.revoked_at is None:
                self.db.invites[invite.id] = invite.model_copy(update={"revoked_at": now})
        invite = Invite(id=InviteId(self.db.next_id("invites")), created_at=now, **draft.model_dump())
        self.db.invites[invite.id] = invite
        return invite

    async def find_by_id(self, invite_id: InviteId) -> Optional[Invite]:
        return self.db.invites.get(invite_id)

    async def find_latest_for_donor(self, donor_id: DonorId) -> Optional[Invite]:
        invites = self._for_donor(donor_id)
        return invites[0] if invites else None

    async def find_latest_active_for_donor(self, donor_id: DonorId) -> Optional[Invite]:
        for invite in self._for_donor(donor_id):
            if invite.revoked_at is None:
                return invite
        return None

    async def update(self, invite: Invite) -> Invite:
        if invite.id not in self.db.invites:
            raise NotFoundError("Invite", str(invite.id))
        self.db.invites[invite.id] = invite
        return invite

    def _set(self, invite_id: InviteId, **changes) -> Optional[Invite]:
        invite = self.db.invites.get(invite_id)
        if invite is None:
            return None
        updated = invite.model_copy(update=changes)
        self.db.invites[invite_id] = updated
        return updated

    async def mark_email_sent(
        self, invite_id: InviteId, sent_at: datetime | None = None
    ) -> Invite:
        invite = self._set(invite_id, email_sent_at=sent_at or utcnow())
        if invite is None:
            raise NotFoundError("Invite", str(invite_id))
        return invite

    async def revoke(self, invite_id: InviteId, revoked_at: datetime | None = None) -> None:
        self._set(invite_id, revoked_at=revoked_at or utcnow())

    async def mark_plex_revoked(
        self, invite_id: InviteId, revoked_at: datetime | None = None
    ) -> Optional[Invite]:
        invite = self.db.invites.get(invite_id)
        if invite is None:
            return None
        now = revoked_at or utcnow()
        return self._set(invite_id, plex_revoked_at=now, revoked_at=invite.revoked_at or now)

    async def list_for_donor(self, donor_id: DonorId) -> list[Invite]:
        return self._for_donor(donor_id)

    async def list_eligible_for_revocation(self, now: datetime) -> list[Invite]:
        eligible = []
        for invite in sorted(self.db.invites.values(), key=lambda invite: invite.id):
            donor = self.db.donors.get(invite.donor_id)
            if (
                invite.revoked_at is None
                and donor is not None
                and donor.status in EXPIRABLE_STATUSES
                and donor.access_expires_at is not None
                and donor.access_expires_at < now
            ):
                eligible.append(invite)
        return eligible
