"""In-memory repository implementations for testing."""

from .database import InMemoryDatabase, InMemoryDatabaseHealth
from .donor import InMemoryDonorRepository
from .event import InMemoryEventRepository
from .invite import InMemoryInviteRepository
from .payment import InMemoryPaymentRepository
from .share_link import InMemoryShareLinkRepository

__all__ = [
    "InMemoryDatabase",
    "InMemoryDatabaseHealth",
    "InMemoryDonorRepository",
    "InMemoryEventRepository",
    "InMemoryInviteRepository",
    "InMemoryPaymentRepository",
    "InMemoryShareLinkRepository",
]
