"""Domain model entities for plex-donate."""

from plexdonate.domain.model.common import utcnow
from plexdonate.domain.model.donor import Donor, DonorFields
from plexdonate.domain.model.event import AuditEvent
from plexdonate.domain.model.invite import Invite, InviteDraft
from plexdonate.domain.model.payment import Payment, PaymentDraft
from plexdonate.domain.model.share_link import ShareLink
from plexdonate.domain.model.subscription_event import (
    AccessExpired,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionActivated,
    SubscriptionEvent,
    SubscriptionTerminated,
    SubscriptionUpdated,
)

__all__ = [
    "Donor",
    "DonorFields",
    "Invite",
    "InviteDraft",
    "Payment",
    "PaymentDraft",
    "AuditEvent",
    "ShareLink",
    # Subscription events
    "SubscriptionEvent",
    "SubscriptionActivated",
    "SubscriptionUpdated",
    "SubscriptionTerminated",
    "PaymentSucceeded",
    "PaymentFailed",
    "AccessExpired",
    "utcnow",
]
