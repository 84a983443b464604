"""Uniform subscription events.

Provider webhooks (PayPal, Stripe) and the sweeper are translated into one
of these kinds before they reach the reconciler, which switches on ``kind``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import Field

from plexdonate.domain.model.common import DomainModel
from plexdonate.domain.value import (
    DonorId,
    DonorStatus,
    Provider,
    Subscriber,
    TerminationCause,
)


class _SubscriptionEventBase(DomainModel):
    provider: Provider
    subscription_id: str
    # Provider event id, when the event came from a webhook
    event_id: str | None = None
    customer_id: str | None = None

    @property
    def lock_key(self) -> tuple[str, str]:
        return (self.provider.value, self.subscription_id)


class SubscriptionActivated(_SubscriptionEventBase):
    kind: Literal["subscription_activated"] = "subscription_activated"
    subscriber: Subscriber = Field(default_factory=Subscriber)
    last_payment_at: datetime | None = None
    next_billing_at: datetime | None = None


class SubscriptionUpdated(_SubscriptionEventBase):
    kind: Literal["subscription_updated"] = "subscription_updated"
    status: DonorStatus
    raw_status: str | None = None
    subscriber: Subscriber = Field(default_factory=Subscriber)
    next_billing_at: datetime | None = None


class SubscriptionTerminated(_SubscriptionEventBase):
    kind: Literal["subscription_terminated"] = "subscription_terminated"
    cause: TerminationCause
    effective_at: datetime | None = None


class PaymentSucceeded(_SubscriptionEventBase):
    kind: Literal["payment_succeeded"] = "payment_succeeded"
    payment_id: str
    amount: Decimal | None = None
    currency: str | None = None
    paid_at: datetime
    subscriber: Subscriber = Field(default_factory=Subscriber)


class PaymentFailed(_SubscriptionEventBase):
    kind: Literal["payment_failed"] = "payment_failed"
    attempt_count: int | None = None


class AccessExpired(_SubscriptionEventBase):
    """Synthetic sweeper event: a donor's grace window has elapsed."""

    kind: Literal["access_expired"] = "access_expired"
    donor_id: DonorId
    observed_at: datetime


SubscriptionEvent = Annotated[
    Union[
        SubscriptionActivated,
        SubscriptionUpdated,
        SubscriptionTerminated,
        PaymentSucceeded,
        PaymentFailed,
        AccessExpired,
    ],
    Field(discriminator="kind"),
]
