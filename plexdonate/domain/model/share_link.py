"""Share link entity.

Share links bootstrap donors through the admin flow. The reconciler only
consumes the resulting donor; links are kept so donor deletion cascades.
"""

from datetime import datetime

from pydantic import Field

from plexdonate.domain.model.common import DomainModel, utcnow
from plexdonate.domain.value import DonorId, ProspectId, ShareLinkId


class ShareLink(DomainModel):
    """Share link owned by a donor or a prospect (never both)."""

    id: ShareLinkId
    token: str
    donor_id: DonorId | None = None
    prospect_id: ProspectId | None = None
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: datetime | None = None
