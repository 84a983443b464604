"""SQL repository implementations."""

from plexdonate.persistence.repository.donor import SqlDonorRepository
from plexdonate.persistence.repository.event import SqlEventRepository
from plexdonate.persistence.repository.invite import SqlInviteRepository
from plexdonate.persistence.repository.payment import SqlPaymentRepository
from plexdonate.persistence.repository.share_link import SqlShareLinkRepository

__all__ = [
    "SqlDonorRepository",
    "SqlInviteRepository",
    "SqlPaymentRepository",
    "SqlEventRepository",
    "SqlShareLinkRepository",
]
