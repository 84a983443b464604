"""Domain value objects for plex-donate.

Value objects are immutable and defined by their values, not identity.
They encapsulate validation rules and normalization.
"""

import re
from enum import Enum

from pydantic import field_validator

from plexdonate.domain.value.common import (
    ValueObject,
    clean_optional,
    normalize_email,
)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

APPLE_RELAY_DOMAIN = "privaterelay.appleid.com"


class Provider(str, Enum):
    """Payment provider owning a subscription."""

    PAYPAL = "paypal"
    STRIPE = "stripe"


class DonorStatus(str, Enum):
    """Donor lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    TRIAL = "trial"
    PAST_DUE = "past_due"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    TRIAL_EXPIRED = "trial_expired"

    @classmethod
    def parse(cls, value: str | None) -> "DonorStatus":
        """Parse a stored or provider status, folding legacy spellings.

        Older rows stored raw PayPal statuses such as ``approval_pending``.
        """
        normalized = (value or "").strip().lower()
        if not normalized:
            return cls.PENDING
        aliases = {
            "approval_pending": cls.PENDING,
            "approved": cls.PENDING,
            "canceled": cls.CANCELLED,
        }
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)

    @property
    def is_terminal(self) -> bool:
        """Statuses that schedule access expiration."""
        return self in (
            DonorStatus.CANCELLED,
            DonorStatus.SUSPENDED,
            DonorStatus.EXPIRED,
            DonorStatus.TRIAL_EXPIRED,
        )


# Statuses the sweeper revokes once access_expires_at has passed
EXPIRABLE_STATUSES = (
    DonorStatus.CANCELLED,
    DonorStatus.SUSPENDED,
    DonorStatus.EXPIRED,
    DonorStatus.TRIAL,
)

# Statuses whose provider state is worth re-reading on every sweep
AMBIGUOUS_STATUSES = (DonorStatus.PENDING,)


class TerminationCause(str, Enum):
    """Why a subscription stopped paying."""

    CANCELLED = "cancelled"
    SUSPENDED = "suspended"
    EXPIRED = "expired"

    @property
    def status(self) -> DonorStatus:
        return DonorStatus(self.value)


class ShareState(str, Enum):
    """Whether a donor currently appears on the Plex server."""

    SHARED = "shared"
    PENDING = "pending"
    ABSENT = "absent"


class RevokeOutcome(str, Enum):
    """Result of a Plex user revocation."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    NOT_FOUND = "not_found"


class CancelOutcome(str, Enum):
    """Result of cancelling a pending Plex invite."""

    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


def is_relay_email(value: str | None) -> bool:
    return normalize_email(value).endswith(f"@{APPLE_RELAY_DOMAIN}")


class Subscriber(ValueObject):
    """Contact details reported by a payment provider."""

    email: str | None = None
    name: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_subscriber_email(cls, v: object) -> str | None:
        normalized = normalize_email(v)
        if not normalized:
            return None
        if not _EMAIL_PATTERN.match(normalized):
            raise ValueError(f"Invalid subscriber email: {v!r}")
        return normalized

    @field_validator("name", mode="before")
    @classmethod
    def clean_name(cls, v: object) -> str | None:
        return clean_optional(v)
