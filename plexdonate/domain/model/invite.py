"""Invite entity.

An invite records a Plex share or pending invitation issued for a donor.
At most one invite per donor is active (``revoked_at`` is null).
"""

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from plexdonate.domain.model.common import DomainModel, utcnow
from plexdonate.domain.value import DonorId, InviteId, SharedLibrary


class Invite(DomainModel):
    """Invite entity.

    Business rules:
    - One active invite per donor
    - Usable iff not revoked and it carries a URL or a Plex invite id
    - Stale once older than the configured threshold
    """

    id: InviteId
    donor_id: DonorId
    plex_invite_id: str | None = None
    invite_url: str | None = None
    invite_status: str | None = None
    invited_at: datetime | None = None
    plex_invited_at: datetime | None = None
    shared_libraries: list[SharedLibrary] = []
    recipient_email: str | None = None
    plex_account_id: str | None = None
    plex_email: str | None = None
    note: str | None = None
    email_sent_at: datetime | None = None
    revoked_at: datetime | None = None
    plex_revoked_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    @property
    def is_usable(self) -> bool:
        return self.revoked_at is None and bool(self.invite_url or self.plex_invite_id)

    @property
    def issued_at(self) -> datetime:
        """Latest known issue instant among Plex, request, and row creation."""
        candidates = [
            value
            for value in (self.plex_invited_at, self.invited_at, self.created_at)
            if value is not None
        ]
        return max(candidates)

    def is_stale(self, threshold_seconds: int, now: datetime | None = None) -> bool:
        """Check staleness. A non-positive threshold disables it."""
        if threshold_seconds <= 0:
            return False
        now = now or utcnow()
        return now - self.issued_at > timedelta(seconds=threshold_seconds)


class InviteDraft(BaseModel):
    """Fields for a new invite row."""

    donor_id: DonorId
    plex_invite_id: str | None = None
    invite_url: str | None = None
    invite_status: str | None = None
    invited_at: datetime | None = None
    plex_invited_at: datetime | None = None
    shared_libraries: list[SharedLibrary] = []
    recipient_email: str | None = None
    plex_account_id: str | None = None
    plex_email: str | None = None
    note: str | None = None
