"""Share link repository interface."""

from abc import ABC, abstractmethod

from plexdonate.domain.model.share_link import ShareLink
from plexdonate.domain.value import DonorId, ProspectId


class ShareLinkRepository(ABC):
    """Repository for share links owned by donors or prospects."""

    @abstractmethod
    async def create(
        self,
        token: str,
        donor_id: DonorId | None = None,
        prospect_id: ProspectId | None = None,
    ) -> ShareLink:
        """Create a share link for exactly one owner.

        Raises:
            IntegrityError: If the owner already has a link
        """
        pass

    @abstractmethod
    async def find_by_donor(self, donor_id: DonorId) -> ShareLink | None:
        pass

    @abstractmethod
    async def find_by_token(self, token: str) -> ShareLink | None:
        pass
