"""Repository interfaces for plex-donate.

Repository interfaces are defined in the domain layer (dependency inversion).
Implementations live in the persistence layer.
"""

from plexdonate.domain.repository.donor import DonorRepository
from plexdonate.domain.repository.event import EventRepository
from plexdonate.domain.repository.invite import InviteRepository
from plexdonate.domain.repository.payment import PaymentRepository
from plexdonate.domain.repository.share_link import ShareLinkRepository

__all__ = [
    "DonorRepository",
    "InviteRepository",
    "PaymentRepository",
    "EventRepository",
    "ShareLinkRepository",
]
