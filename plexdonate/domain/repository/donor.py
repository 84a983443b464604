"""Donor repository interface."""

from abc import ABC, abstractmethod
from datetime import datetime

from plexdonate.domain.model.donor import Donor, DonorFields
from plexdonate.domain.value import DonorId, DonorStatus, Provider


class DonorRepository(ABC):
    """Repository for Donor entity.

    Every write commits on its own and returns the post-image. Setting a
    donor's status to ``active`` clears ``access_expires_at`` in the same
    write.
    """

    @abstractmethod
    async def find_by_id(self, donor_id: DonorId) -> Donor | None:
        """Find a donor by ID.

        Args:
            donor_id: The donor's identifier

        Returns:
            The donor if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_subscription(
        self, provider: Provider, subscription_id: str
    ) -> Donor | None:
        """Find a donor by provider subscription id.

        Args:
            provider: Provider owning the subscription
            subscription_id: PayPal subscription id or Stripe subscription id

        Returns:
            The donor if found, None otherwise
        """
        pass

    @abstractmethod
    async def find_by_stripe_customer(self, customer_id: str) -> Donor | None:
        """Find a donor by Stripe customer id."""
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Donor | None:
        """Find a donor by normalized contact email."""
        pass

    @abstractmethod
    async def upsert_by_subscription(
        self, provider: Provider, subscription_id: str, fields: DonorFields
    ) -> Donor:
        """Insert or update a donor keyed by subscription id.

        Only fields explicitly set on ``fields`` are written on update.

        Args:
            provider: Provider owning the subscription
            subscription_id: Subscription id, unique per provider
            fields: Fields to write

        Returns:
            The donor after the write
        """
        pass

    @abstractmethod
    async def update_status(
        self,
        provider: Provider,
        subscription_id: str,
        status: DonorStatus,
        last_payment_at: datetime | None = None,
    ) -> Donor | None:
        """Update a donor's status by subscription id.

        Args:
            provider: Provider owning the subscription
            subscription_id: Subscription id
            status: New status
            last_payment_at: Written only when given

        Returns:
            The updated donor, or None when no donor has this subscription
        """
        pass

    @abstractmethod
    async def set_access_expiration(
        self, provider: Provider, subscription_id: str, expires_at: datetime | None
    ) -> Donor | None:
        """Set or clear access expiration by subscription id.

        Returns:
            The updated donor, or None when no donor has this subscription
        """
        pass

    @abstractmethod
    async def set_access_expiration_by_id(
        self, donor_id: DonorId, expires_at: datetime | None
    ) -> Donor | None:
        """Set or clear access expiration by donor id."""
        pass

    @abstractmethod
    async def set_status_by_id(
        self, donor_id: DonorId, status: DonorStatus
    ) -> Donor | None:
        """Set a donor's status by donor id."""
        pass

    @abstractmethod
    async def update(self, donor_id: DonorId, fields: DonorFields) -> Donor | None:
        """Write the explicitly set ``fields`` onto an existing donor.

        Returns:
            The updated donor, or None if it does not exist
        """
        pass

    @abstractmethod
    async def delete(self, donor_id: DonorId) -> bool:
        """Delete a donor and cascade to invites, payments and share links.

        Returns:
            True if a row was deleted
        """
        pass

    @abstractmethod
    async def list_with_expired_access(self, now: datetime) -> list[Donor]:
        """List donors whose grace window ended before ``now``.

        Only statuses that expire (cancelled, suspended, expired, trial)
        are returned.
        """
        pass

    @abstractmethod
    async def list_trials_ending_between(
        self, start: datetime, end: datetime
    ) -> list[Donor]:
        """List unreminded trial donors whose access ends in ``(start, end]``."""
        pass

    @abstractmethod
    async def list_with_subscription(self) -> list[Donor]:
        """List donors linked to any provider subscription."""
        pass

    @abstractmethod
    async def list_with_plex_identity(self) -> list[Donor]:
        """List donors with a recorded Plex account id or Plex email."""
        pass

    @abstractmethod
    async def list_all(self) -> list[Donor]:
        """List all donors, newest first."""
        pass
