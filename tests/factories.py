"""Row builders and lookups shared by the unit tests."""

from datetime import datetime, timedelta, timezone

from plexdonate.domain.model import Donor, Invite
from plexdonate.domain.value import DonorId, InviteId, PlexShare, Provider
from plexdonate.persistence.repository.inmemory import InMemoryDatabase

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def add_donor(db: InMemoryDatabase, **fields) -> Donor:
    """Insert a donor row directly, bypassing the services.

    Defaults to an active PayPal donor with subscription ``I-TEST``.
    """
    values = {
        "email": "donor@example.com",
        "name": "Test Donor",
        "payment_provider": Provider.PAYPAL,
        "subscription_id": "I-TEST",
        "status": "active",
    }
    values.update(fields)
    donor = Donor(id=DonorId(db.next_id("donors")), **values)
    db.donors[donor.id] = donor
    return donor


def add_invite(db: InMemoryDatabase, donor: Donor, **fields) -> Invite:
    """Insert an invite row for ``donor`` directly."""
    values = {
        "plex_invite_id": "plex-invite-1",
        "invite_url": "https://app.plex.tv/invite/abc",
        "recipient_email": donor.email,
        "created_at": NOW - timedelta(days=1),
    }
    values.update(fields)
    invite = Invite(id=InviteId(db.next_id("invites")), donor_id=donor.id, **values)
    db.invites[invite.id] = invite
    return invite


def plex_user(
    email: str | None = None, account_id: str | None = None, pending: bool = False
) -> PlexShare:
    """A normalized Plex user or share entry."""
    return PlexShare(
        id=account_id,
        emails=frozenset({email.lower()}) if email else frozenset(),
        user_ids=frozenset({account_id}) if account_id else frozenset(),
        pending=pending,
    )


def event_types(db: InMemoryDatabase) -> list[str]:
    """Audit event types in insertion order."""
    return [event.event_type for event in db.events]


def events_of(db: InMemoryDatabase, event_type: str) -> list[dict]:
    """Payloads of the audit events of one type."""
    return [event.payload for event in db.events if event.event_type == event_type]
