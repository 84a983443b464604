"""In-memory share link repository for testing."""

from typing import Optional

from sqlalchemy.exc import IntegrityError

from plexdonate.domain.model import ShareLink
from plexdonate.domain.repository import ShareLinkRepository
from plexdonate.domain.value import DonorId, ProspectId, ShareLinkId

from .database import InMemoryDatabase


class InMemoryShareLinkRepository(ShareLinkRepository):
    """In-memory implementation of ShareLinkRepository for testing."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self.db = database

    async def create(
        self,
        token: str,
        donor_id: DonorId | None = None,
        prospect_id: ProspectId | None = None,
    ) -> ShareLink:
        if (donor_id is None) == (prospect_id is None):
            raise ValueError("A share link belongs to exactly one donor or prospect")
        for link in self.db.share_links.values():
            if link.token == token or (
                donor_id is not None and link.donor_id == donor_id
            ) or (prospect_id is not None and link.prospect_id == prospect_id):
                raise IntegrityError("Duplicate share link", None, Exception())
        link = ShareLink(
            id=ShareLinkId(self.db.next_id("share_links")),
            token=token,
            donor_id=donor_id,
            prospect_id=prospect_id,
        )
        self.db.share_links[link.id] = link
        return link

    async def find_by_donor(self, donor_id: DonorId) -> Optional[ShareLink]:
        for link in self.db.share_links.values():
            if link.donor_id == donor_id:
                return link
        return None

    async def find_by_token(self, token: str) -> Optional[ShareLink]:
        for link in self.db.share_links.values():
            if link.token == token:
                return link
        return None
