"""Stripe payload parsing shared by the client and the webhook translator."""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

import logfire
from pydantic import ValidationError as PydanticValidationError

from plexdonate.adapter.common import parse_timestamp
from plexdonate.domain.value import DonorStatus, Subscriber, SubscriptionSnapshot

ZERO_DECIMAL_CURRENCIES = frozenset({"jpy", "krw", "clp", "vnd"})

_STATUS_MAP = {
    "incomplete": DonorStatus.PENDING,
    "incomplete_expired": DonorStatus.EXPIRED,
    "trialing": DonorStatus.TRIAL,
    "active": DonorStatus.ACTIVE,
    "past_due": DonorStatus.PAST_DUE,
    "canceled": DonorStatus.CANCELLED,
    "cancelled": DonorStatus.CANCELLED,
    "unpaid": DonorStatus.SUSPENDED,
    "paused": DonorStatus.SUSPENDED,
}


def map_stripe_status(raw_status: Any) -> DonorStatus | None:
    if not raw_status:
        return None
    return _STATUS_MAP.get(str(raw_status).strip().lower())


def from_minor_units(amount: Any, currency: str | None) -> Decimal | None:
    """Convert a Stripe minor-unit integer into a major-unit decimal.

    Examples:
        >>> from_minor_units(1000, "usd")
        Decimal('10.00')
        >>> from_minor_units(500, "JPY")
        Decimal('500')
    """
    if amount is None:
        return None
    value = Decimal(int(amount))
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return value
    return (value / 100).quantize(Decimal("0.01"))


def _subscriber(email: Any, name: Any) -> Subscriber:
    try:
        return Subscriber(email=email, name=name)
    except PydanticValidationError:
        logfire.warn("Ignoring invalid Stripe customer email", email=email)
        return Subscriber(name=name)


def customer_details(customer: Any) -> tuple[str | None, Subscriber]:
    """Split a ``customer`` field into its id and contact details.

    The field is a bare id unless the object was fetched with
    ``expand=["customer"]``.
    """
    if isinstance(customer, Mapping):
        return customer.get("id"), _subscriber(
            customer.get("email"), customer.get("name")
        )
    if customer:
        return str(customer), Subscriber()
    return None, Subscriber()


def period_end(subscription: Mapping[str, Any]) -> Any:
    """Raw ``current_period_end``; newer API versions move it onto the items."""
    if subscription.get("current_period_end"):
        return subscription["current_period_end"]
    items = (subscription.get("items") or {}).get("data") or []
    for item in items:
        if isinstance(item, Mapping) and item.get("current_period_end"):
            return item["current_period_end"]
    return None


def snapshot_from_subscription(subscription: Mapping[str, Any]) -> SubscriptionSnapshot:
    raw_status = subscription.get("status")
    customer_id, subscriber = customer_details(subscription.get("customer"))
    return SubscriptionSnapshot(
        subscription_id=str(subscription.get("id") or ""),
        status=map_stripe_status(raw_status),
        raw_status=str(raw_status) if raw_status else None,
        next_billing_at=parse_timestamp(period_end(subscription)),
        subscriber=subscriber,
        customer_id=customer_id,
    )
