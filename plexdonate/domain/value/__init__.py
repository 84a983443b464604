"""Domain value objects for plex-donate."""

from plexdonate.domain.value.common import (
    ValueObject,
    clean_optional,
    normalize_email,
    normalize_identifier,
)
from plexdonate.domain.value.identifiers import (
    DonorId,
    EventId,
    InviteId,
    PaymentId,
    ProspectId,
    ShareLinkId,
)
from plexdonate.domain.value.provider import (
    CheckoutSession,
    EmailEnvelope,
    PlanResult,
    PlexConnectionInfo,
    PlexInviteResult,
    PlexShare,
    SharedLibrary,
    SubscriptionCreation,
    SubscriptionSnapshot,
    WebhookVerification,
)
from plexdonate.domain.value.types import (
    AMBIGUOUS_STATUSES,
    APPLE_RELAY_DOMAIN,
    EXPIRABLE_STATUSES,
    CancelOutcome,
    DonorStatus,
    Provider,
    RevokeOutcome,
    ShareState,
    Subscriber,
    TerminationCause,
    is_relay_email,
)

__all__ = [
    # Identifiers
    "DonorId",
    "EventId",
    "InviteId",
    "PaymentId",
    "ProspectId",
    "ShareLinkId",
    # Types
    "AMBIGUOUS_STATUSES",
    "APPLE_RELAY_DOMAIN",
    "EXPIRABLE_STATUSES",
    "CancelOutcome",
    "DonorStatus",
    "Provider",
    "RevokeOutcome",
    "ShareState",
    "Subscriber",
    "TerminationCause",
    "ValueObject",
    "is_relay_email",
    # Provider DTOs
    "CheckoutSession",
    "EmailEnvelope",
    "PlanResult",
    "PlexConnectionInfo",
    "PlexInviteResult",
    "PlexShare",
    "SharedLibrary",
    "SubscriptionCreation",
    "SubscriptionSnapshot",
    "WebhookVerification",
    # Normalizers
    "clean_optional",
    "normalize_email",
    "normalize_identifier",
]
