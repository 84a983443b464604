"""Domain services."""

from .audit_service import AuditService
from .base import Service
from .donor_service import DonorDetails, DonorService
from .invite_service import InviteService
from .matching import donor_share_state, find_matching_share
from .notifier import Notifier, format_http_date, relay_flags
from .provider import (
    MailClient,
    PaymentProviderClient,
    PayPalClient,
    PlexClient,
    StripeClient,
)

__all__ = [
    "AuditService",
    "DonorDetails",
    "DonorService",
    "InviteService",
    "Notifier",
    "Service",
    # Ports
    "MailClient",
    "PaymentProviderClient",
    "PayPalClient",
    "PlexClient",
    "StripeClient",
    # Helpers
    "donor_share_state",
    "find_matching_share",
    "format_http_date",
    "relay_flags",
]
