"""Invite repository interface."""

from abc import ABC, abstractmethod
from datetime import datetime

from plexdonate.domain.model.invite import Invite, InviteDraft
from plexdonate.domain.value import DonorId, InviteId


class InviteRepository(ABC):
    """Repository for Invite entity.

    At most one invite per donor has ``revoked_at`` unset; the store enforces
    this with a partial unique index.
    """

    @abstractmethod
    async def create(self, draft: InviteDraft) -> Invite:
        """Create an invite, revoking any prior active invite for the donor.

        Revocation and insert happen in one transaction.

        Args:
            draft: Fields of the new invite

        Returns:
            The created invite

        Raises:
            IntegrityError: If a concurrent writer created an active invite
                for the same donor first
        """
        pass

    @abstractmethod
    async def find_by_id(self, invite_id: InviteId) -> Invite | None:
        """Find an invite by ID."""
        pass

    @abstractmethod
    async def find_latest_for_donor(self, donor_id: DonorId) -> Invite | None:
        """Most recent invite for a donor, revoked or not."""
        pass

    @abstractmethod
    async def find_latest_active_for_donor(self, donor_id: DonorId) -> Invite | None:
        """Most recent invite for a donor whose ``revoked_at`` is unset."""
        pass

    @abstractmethod
    async def update(self, invite: Invite) -> Invite:
        """Persist all mutable fields of an existing invite.

        Raises:
            NotFoundError: If the invite does not exist
        """
        pass

    @abstractmethod
    async def mark_email_sent(
        self, invite_id: InviteId, sent_at: datetime | None = None
    ) -> Invite:
        """Record that the invite email went out.

        Raises:
            NotFoundError: If the invite does not exist
        """
        pass

    @abstractmethod
    async def revoke(self, invite_id: InviteId, revoked_at: datetime | None = None) -> None:
        """Mark an invite revoked locally."""
        pass

    @abstractmethod
    async def mark_plex_revoked(
        self, invite_id: InviteId, revoked_at: datetime | None = None
    ) -> Invite | None:
        """Mark an invite revoked both on Plex and locally."""
        pass

    @abstractmethod
    async def list_for_donor(self, donor_id: DonorId) -> list[Invite]:
        """All invites of a donor, newest first."""
        pass

    @abstractmethod
    async def list_eligible_for_revocation(self, now: datetime) -> list[Invite]:
        """Active invites whose donor's access expired before ``now``."""
        pass
