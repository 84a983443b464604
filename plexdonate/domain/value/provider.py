"""Provider-facing value objects.

Provider clients return these instead of raw wire payloads so the
reconciler never depends on PayPal, Stripe, or Plex JSON shapes.
"""

from datetime import datetime

from pydantic import Field

from plexdonate.domain.value.common import ValueObject
from plexdonate.domain.value.types import DonorStatus, Subscriber


class SubscriptionSnapshot(ValueObject):
    """Normalized view of a provider subscription."""

    subscription_id: str
    status: DonorStatus | None = None
    raw_status: str | None = None
    next_billing_at: datetime | None = None
    last_payment_at: datetime | None = None
    subscriber: Subscriber = Field(default_factory=Subscriber)
    customer_id: str | None = None


class WebhookVerification(ValueObject):
    """Outcome of a PayPal verify-webhook-signature call."""

    verified: bool
    reason: str | None = None


class SubscriptionCreation(ValueObject):
    """A PayPal subscription awaiting buyer approval."""

    subscription_id: str
    approval_url: str


class PlanResult(ValueObject):
    """Billing plan resolved or created for a price point."""

    plan_id: str
    product_id: str
    created: bool = False


class CheckoutSession(ValueObject):
    """Stripe hosted checkout session."""

    session_id: str
    url: str


class SharedLibrary(ValueObject):
    """Library section included in a Plex share."""

    id: str
    title: str | None = None


class PlexInviteResult(ValueObject):
    """Invite created on Plex.

    The v2 endpoint shares immediately and returns no invite id or URL.
    """

    plex_invite_id: str | None = None
    invite_url: str | None = None
    status: str | None = None
    invited_at: datetime | None = None
    shared_libraries: list[SharedLibrary] = []


class PlexShare(ValueObject):
    """A user or share on the Plex server, normalized for matching.

    ``emails`` are trimmed and lowercased; ``user_ids`` are additionally
    stripped of hyphens.
    """

    id: str | None = None
    emails: frozenset[str] = frozenset()
    user_ids: frozenset[str] = frozenset()
    status: str | None = None
    pending: bool = False


class PlexConnectionInfo(ValueObject):
    """Result of a Plex connectivity check."""

    server_identifier: str
    library_section_ids: list[str]
    invite_endpoint_version: str
    libraries: list[SharedLibrary] = []


class EmailEnvelope(ValueObject):
    """A composed email ready for the mail client."""

    to: str
    subject: str
    text: str
    html: str
    template: str
