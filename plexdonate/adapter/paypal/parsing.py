"""PayPal payload parsing shared by the REST client and the webhook translator."""

from collections.abc import Mapping
from typing import Any

import logfire
from pydantic import ValidationError as PydanticValidationError

from plexdonate.adapter.common import parse_timestamp
from plexdonate.domain.value import DonorStatus, Subscriber, SubscriptionSnapshot

_STATUS_MAP = {
    "approval_pending": DonorStatus.PENDING,
    "approved": DonorStatus.PENDING,
    "active": DonorStatus.ACTIVE,
    "suspended": DonorStatus.SUSPENDED,
    "cancelled": DonorStatus.CANCELLED,
    "expired": DonorStatus.EXPIRED,
}


def map_paypal_status(raw_status: Any) -> DonorStatus | None:
    """Map a PayPal subscription status onto a donor status.

    Returns None for blank or unknown statuses.
    """
    if not raw_status:
        return None
    return _STATUS_MAP.get(str(raw_status).strip().lower())


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def extract_subscriber(resource: Mapping[str, Any]) -> Subscriber:
    """Read subscriber email and display name from a subscription resource.

    Handles both the ``subscriber`` block of billing subscriptions and the
    older ``payer``/``payer_info`` shape.
    """
    subscriber = _mapping(resource.get("subscriber")) or _mapping(
        resource.get("payer")
    )
    name = _mapping(subscriber.get("name")) or _mapping(subscriber.get("payer_info"))
    parts = [
        name.get("given_name") or name.get("first_name"),
        name.get("surname") or name.get("last_name"),
    ]
    display_name = " ".join(str(part).strip() for part in parts if part)
    email = (
        subscriber.get("email_address")
        or subscriber.get("email")
        or resource.get("email_address")
    )
    full_name = display_name or subscriber.get("full_name")

    try:
        return Subscriber(email=email, name=full_name)
    except PydanticValidationError:
        logfire.warn("Ignoring invalid PayPal subscriber email", email=email)
        return Subscriber(name=full_name)


def billing_times(resource: Mapping[str, Any]) -> tuple[Any, Any]:
    """Return ``(next_billing_time, last_payment.time)`` raw values."""
    billing_info = _mapping(resource.get("billing_info"))
    last_payment = _mapping(billing_info.get("last_payment"))
    return billing_info.get("next_billing_time"), last_payment.get("time")


def snapshot_from_resource(
    resource: Mapping[str, Any], subscription_id: str | None = None
) -> SubscriptionSnapshot:
    """Build a normalized snapshot from a PayPal subscription resource."""
    raw_status = resource.get("status")
    next_billing, last_payment = billing_times(resource)
    return SubscriptionSnapshot(
        subscription_id=subscription_id or str(resource.get("id") or ""),
        status=map_paypal_status(raw_status),
        raw_status=str(raw_status).lower() if raw_status else None,
        next_billing_at=parse_timestamp(next_billing),
        last_payment_at=parse_timestamp(last_payment),
        subscriber=extract_subscriber(resource),
    )


def build_subscriber_details(
    email: str | None = None, name: str | None = None
) -> dict[str, Any]:
    """Build the ``subscriber`` block for a subscription create request.

    Example:
        >>> build_subscriber_details(" A@X.io ", "Ada  Lovelace King")
        {'email_address': 'a@x.io', 'name': {'given_name': 'Ada', 'surname': 'Lovelace King'}}
    """
    details: dict[str, Any] = {}
    email_candidate = (email or "").strip().lower()
    if email_candidate:
        details["email_address"] = email_candidate

    parts = (name or "").split()
    if parts:
        details["name"] = {"given_name": parts[0]}
        if len(parts) > 1:
            details["name"]["surname"] = " ".join(parts[1:])
    return details
