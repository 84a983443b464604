"""Donor domain service."""

from datetime import datetime, timedelta

import logfire
from pydantic import BaseModel

from plexdonate.domain.error import BusinessRuleViolationError, NotFoundError
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.model.donor import Donor, DonorFields
from plexdonate.domain.model.invite import Invite
from plexdonate.domain.model.payment import Payment, PaymentDraft
from plexdonate.domain.repository import (
    DonorRepository,
    InviteRepository,
    PaymentRepository,
)
from plexdonate.domain.value import (
    AMBIGUOUS_STATUSES,
    DonorId,
    DonorStatus,
    Provider,
)

from .base import Service


class DonorDetails(BaseModel):
    """A donor with its invites and payments, newest first."""

    donor: Donor
    invites: list[Invite]
    payments: list[Payment]


class DonorService(Service):
    """Domain service for donor and payment operations."""

    def __init__(
        self,
        donor_repository: DonorRepository,
        invite_repository: InviteRepository,
        payment_repository: PaymentRepository,
    ) -> None:
        """Initialize donor service.

        Args:
            donor_repository: Donor repository
            invite_repository: Invite repository
            payment_repository: Payment repository
        """
        self.donor_repository = donor_repository
        self.invite_repository = invite_repository
        self.payment_repository = payment_repository

    async def get_donor(self, donor_id: DonorId) -> Donor:
        """Get a donor by ID.

        Raises:
            NotFoundError: If the donor does not exist
        """
        donor = await self.donor_repository.find_by_id(donor_id)
        if donor is None:
            raise NotFoundError("Donor", str(donor_id))
        return donor

    async def find_by_subscription(
        self, provider: Provider, subscription_id: str
    ) -> Donor | None:
        return await self.donor_repository.find_by_subscription(provider, subscription_id)

    async def find_by_stripe_customer(self, customer_id: str) -> Donor | None:
        return await self.donor_repository.find_by_stripe_customer(customer_id)

    async def find_by_email(self, email: str) -> Donor | None:
        return await self.donor_repository.find_by_email(email)

    async def upsert_from_subscription(
        self, provider: Provider, subscription_id: str, fields: DonorFields
    ) -> tuple[Donor, bool]:
        """Create or update the donor owning a subscription.

        Args:
            provider: Provider owning the subscription
            subscription_id: Subscription id
            fields: Fields to write

        Returns:
            Tuple of (donor after the write, whether it was created)
        """
        with logfire.span(
            "donor_service.upsert_from_subscription",
            provider=provider.value,
            subscription_id=subscription_id,
        ):
            existing = await self.donor_repository.find_by_subscription(
                provider, subscription_id
            )
            if existing is None and provider == Provider.STRIPE:
                customer_id = fields.stripe_customer_id
                if customer_id:
                    # Checkout may have linked the customer before the subscription
                    existing = await self.donor_repository.find_by_stripe_customer(
                        customer_id
                    )
            donor = await self.donor_repository.upsert_by_subscription(
                provider, subscription_id, fields
            )
            created = existing is None
            if created:
                logfire.info(
                    "Donor created",
                    donor_id=donor.id,
                    provider=provider.value,
                    subscription_id=subscription_id,
                )
            return donor, created

    async def update_status(
        self,
        provider: Provider,
        subscription_id: str,
        status: DonorStatus,
        last_payment_at: datetime | None = None,
    ) -> Donor | None:
        with logfire.span(
            "donor_service.update_status",
            provider=provider.value,
            subscription_id=subscription_id,
            status=status.value,
        ):
            donor = await self.donor_repository.update_status(
                provider, subscription_id, status, last_payment_at
            )
            if donor is None:
                logfire.warn(
                    "Status update for unknown subscription",
                    provider=provider.value,
                    subscription_id=subscription_id,
                )
            return donor

    async def set_access_expiration(
        self, donor: Donor, expires_at: datetime | None
    ) -> Donor:
        """Set or clear a donor's access expiration.

        Raises:
            BusinessRuleViolationError: If an expiration is set on an active donor
            NotFoundError: If the donor disappeared
        """
        if expires_at is not None and donor.status == DonorStatus.ACTIVE:
            raise BusinessRuleViolationError(
                f"Active donor {donor.id} cannot have an access expiration"
            )
        updated = await self.donor_repository.set_access_expiration_by_id(
            donor.id, expires_at
        )
        if updated is None:
            raise NotFoundError("Donor", str(donor.id))
        logfire.info(
            "Access expiration set",
            donor_id=donor.id,
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return updated

    async def set_status(self, donor: Donor, status: DonorStatus) -> Donor:
        updated = await self.donor_repository.set_status_by_id(donor.id, status)
        if updated is None:
            raise NotFoundError("Donor", str(donor.id))
        return updated

    async def update_donor(self, donor: Donor, fields: DonorFields) -> Donor:
        """Write explicitly set fields onto a donor.

        Raises:
            NotFoundError: If the donor disappeared
        """
        updated = await self.donor_repository.update(donor.id, fields)
        if updated is None:
            raise NotFoundError("Donor", str(donor.id))
        return updated

    async def record_payment(self, draft: PaymentDraft) -> tuple[Payment, bool]:
        """Record a payment once per ``(provider, provider_payment_id)``.

        Returns:
            Tuple of (payment, whether it was newly recorded)
        """
        with logfire.span(
            "donor_service.record_payment",
            donor_id=draft.donor_id,
            provider=draft.provider.value,
            provider_payment_id=draft.provider_payment_id,
        ):
            existing = await self.payment_repository.find_by_provider_payment_id(
                draft.provider, draft.provider_payment_id
            )
            if existing is not None:
                logfire.info(
                    "Payment already recorded",
                    payment_id=existing.id,
                    provider_payment_id=draft.provider_payment_id,
                )
                return existing, False
            payment = await self.payment_repository.record(draft)
            return payment, True

    async def has_recorded_payment(self, donor_id: DonorId) -> bool:
        """Whether any paid payment has been recorded for the donor."""
        return bool(await self.payment_repository.list_for_donor(donor_id))

    async def delete_donor(self, donor_id: DonorId) -> bool:
        with logfire.span("donor_service.delete_donor", donor_id=donor_id):
            deleted = await self.donor_repository.delete(donor_id)
            if deleted:
                logfire.info("Donor deleted", donor_id=donor_id)
            return deleted

    async def list_donors_with_details(self) -> list[DonorDetails]:
        donors = await self.donor_repository.list_all()
        details = []
        for donor in donors:
            invites = await self.invite_repository.list_for_donor(donor.id)
            payments = await self.payment_repository.list_for_donor(donor.id)
            details.append(DonorDetails(donor=donor, invites=invites, payments=payments))
        return details

    async def list_with_expired_access(self, now: datetime | None = None) -> list[Donor]:
        return await self.donor_repository.list_with_expired_access(now or utcnow())

    async def list_trials_needing_reminder(
        self, window_seconds: float, now: datetime | None = None
    ) -> list[Donor]:
        """Trial donors whose access ends within ``window_seconds`` of ``now``."""
        now = now or utcnow()
        return await self.donor_repository.list_trials_ending_between(
            now, now + timedelta(seconds=window_seconds)
        )

    async def list_needing_refresh(
        self, refresh_interval_seconds: float, now: datetime | None = None
    ) -> list[Donor]:
        """PayPal donors in an ambiguous status or not refreshed recently."""
        now = now or utcnow()
        threshold = now - timedelta(seconds=refresh_interval_seconds)
        donors = await self.donor_repository.list_with_subscription()
        return [
            donor
            for donor in donors
            if donor.provider == Provider.PAYPAL
            and donor.subscription_id
            and (
                donor.status in AMBIGUOUS_STATUSES
                or donor.last_refreshed_at is None
                or donor.last_refreshed_at < threshold
            )
        ]

    async def list_with_plex_identity(self) -> list[Donor]:
        return await self.donor_repository.list_with_plex_identity()
