"""Invite domain service."""

from datetime import datetime

import logfire
from sqlalchemy.exc import IntegrityError

from plexdonate.domain.error import ConflictError, NotFoundError
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.model.invite import Invite, InviteDraft
from plexdonate.domain.repository import InviteRepository
from plexdonate.domain.value import DonorId, InviteId

from .base import Service


class InviteService(Service):
    """Domain service for Plex invite records."""

    # Re-reads after losing a create race before giving up
    MAX_CREATE_ATTEMPTS = 2

    def __init__(
        self, invite_repository: InviteRepository, stale_threshold_seconds: int = 0
    ) -> None:
        """Initialize invite service.

        Args:
            invite_repository: Invite repository
            stale_threshold_seconds: Age after which invites are recreated (0 disables)
        """
        self.invite_repository = invite_repository
        self.stale_threshold_seconds = stale_threshold_seconds

    def is_stale(self, invite: Invite, now: datetime | None = None) -> bool:
        return invite.is_stale(self.stale_threshold_seconds, now)

    async def get_latest_for_donor(self, donor_id: DonorId) -> Invite | None:
        return await self.invite_repository.find_latest_for_donor(donor_id)

    async def get_latest_active_for_donor(self, donor_id: DonorId) -> Invite | None:
        return await self.invite_repository.find_latest_active_for_donor(donor_id)

    async def list_for_donor(self, donor_id: DonorId) -> list[Invite]:
        return await self.invite_repository.list_for_donor(donor_id)

    async def create_invite(self, draft: InviteDraft) -> tuple[Invite, bool]:
        """Create the donor's active invite.

        A concurrent creator may win the partial unique index on active
        invites. The loser re-reads and returns the winner's row.

        Args:
            draft: Fields of the new invite

        Returns:
            Tuple of (active invite, whether this call created it)

        Raises:
            ConflictError: If no active invite is visible after repeated conflicts
        """
        with logfire.span(
            "invite_service.create_invite",
            donor_id=draft.donor_id,
            has_invite_url=bool(draft.invite_url),
        ):
            for attempt in range(1, self.MAX_CREATE_ATTEMPTS + 1):
                try:
                    invite = await self.invite_repository.create(draft)
                except IntegrityError:
                    logfire.warn(
                        "Invite create lost race",
                        donor_id=draft.donor_id,
                        attempt=attempt,
                    )
                    winner = await self.invite_repository.find_latest_active_for_donor(
                        draft.donor_id
                    )
                    if winner is not None:
                        return winner, False
                    continue
                logfire.info(
                    "Invite created", invite_id=invite.id, donor_id=draft.donor_id
                )
                return invite, True

            raise ConflictError("Invite", f"donor:{draft.donor_id}")

    async def update_invite(self, invite: Invite) -> Invite:
        with logfire.span("invite_service.update_invite", invite_id=invite.id):
            return await self.invite_repository.update(invite)

    async def mark_email_sent(
        self, invite_id: InviteId, sent_at: datetime | None = None
    ) -> Invite:
        invite = await self.invite_repository.mark_email_sent(invite_id, sent_at or utcnow())
        logfire.info("Invite email marked sent", invite_id=invite_id)
        return invite

    async def revoke(self, invite_id: InviteId) -> None:
        await self.invite_repository.revoke(invite_id, utcnow())

    async def mark_plex_revoked(self, invite_id: InviteId) -> Invite:
        """Mark an invite revoked on Plex and locally.

        Raises:
            NotFoundError: If the invite does not exist
        """
        invite = await self.invite_repository.mark_plex_revoked(invite_id, utcnow())
        if invite is None:
            raise NotFoundError("Invite", str(invite_id))
        return invite

    async def list_eligible_for_revocation(
        self, now: datetime | None = None
    ) -> list[Invite]:
        return await self.invite_repository.list_eligible_for_revocation(now or utcnow())
