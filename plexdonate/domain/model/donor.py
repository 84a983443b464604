"""Donor entity.

A donor is a person whose subscription grants them Plex library access.
Billing identity is either a PayPal subscription id or a Stripe
customer/subscription pair; Plex identity is tracked independently of the
contact email.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from plexdonate.domain.model.common import DomainModel, utcnow
from plexdonate.domain.value import DonorId, DonorStatus, Provider


class Donor(DomainModel):
    """Donor entity.

    Business rules:
    - ``subscription_id`` (PayPal) and ``stripe_subscription_id`` are unique
    - An active donor never carries ``access_expires_at``
    - ``had_preexisting_access`` protects shares granted outside this system
    """

    id: DonorId
    email: str | None = None
    name: str | None = None
    payment_provider: Provider | None = None
    subscription_id: str | None = None  # PayPal subscription id
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    plex_account_id: str | None = None
    plex_email: str | None = None
    status: DonorStatus = DonorStatus.PENDING
    access_expires_at: datetime | None = None
    had_preexisting_access: bool = False
    last_payment_at: datetime | None = None
    paypal_refresh_error: str | None = None
    last_refreshed_at: datetime | None = None
    trial_reminder_sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def provider(self) -> Provider | None:
        if self.payment_provider:
            return self.payment_provider
        if self.stripe_subscription_id or self.stripe_customer_id:
            return Provider.STRIPE
        if self.subscription_id:
            return Provider.PAYPAL
        return None

    @property
    def billing_subscription_id(self) -> str | None:
        """Subscription id at whichever provider bills this donor."""
        if self.provider == Provider.STRIPE:
            return self.stripe_subscription_id
        return self.subscription_id

    @property
    def plex_invite_email(self) -> str | None:
        """Address the Plex share is addressed to."""
        return self.plex_email or self.email

    @property
    def has_plex_identity(self) -> bool:
        return bool(self.plex_account_id or self.plex_email)


class DonorFields(BaseModel):
    """Partial donor update. Only explicitly set fields are written."""

    email: str | None = None
    name: str | None = None
    payment_provider: Provider | None = None
    stripe_customer_id: str | None = None
    plex_account_id: str | None = None
    plex_email: str | None = None
    status: DonorStatus | None = None
    access_expires_at: datetime | None = None
    had_preexisting_access: bool | None = None
    last_payment_at: datetime | None = None
    paypal_refresh_error: str | None = None
    last_refreshed_at: datetime | None = None
    trial_reminder_sent_at: datetime | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)
