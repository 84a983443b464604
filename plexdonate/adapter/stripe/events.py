"""Translate Stripe webhook events into subscription events."""

from collections.abc import Mapping
from typing import Any

import logfire
from pydantic import ValidationError as PydanticValidationError

from plexdonate.adapter.common import parse_timestamp
from plexdonate.adapter.stripe.parsing import (
    customer_details,
    from_minor_units,
    map_stripe_status,
    period_end,
)
from plexdonate.domain.model import (
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionActivated,
    SubscriptionEvent,
    SubscriptionTerminated,
    SubscriptionUpdated,
    utcnow,
)
from plexdonate.domain.value import (
    DonorStatus,
    Provider,
    Subscriber,
    TerminationCause,
)

_TERMINAL_CAUSES = {
    DonorStatus.CANCELLED: TerminationCause.CANCELLED,
    DonorStatus.SUSPENDED: TerminationCause.SUSPENDED,
    DonorStatus.EXPIRED: TerminationCause.EXPIRED,
}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _subscriber(email: Any, name: Any) -> Subscriber:
    try:
        return Subscriber(email=email, name=name)
    except PydanticValidationError:
        logfire.warn("Ignoring invalid Stripe email", email=email)
        return Subscriber(name=name)


def invoice_subscription_id(invoice: Mapping[str, Any]) -> str | None:
    """Subscription an invoice bills, across API versions."""
    subscription = invoice.get("subscription")
    if isinstance(subscription, Mapping):
        return _text(subscription.get("id"))
    if subscription:
        return _text(subscription)
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _text(details.get("subscription"))


def _checkout_completed(event_id: str | None, session: Mapping[str, Any]):
    subscription_id = _text(session.get("subscription"))
    customer_id = _text(session.get("customer"))
    if session.get("mode") not in (None, "subscription") or not subscription_id:
        logfire.info(
            "Ignoring Stripe checkout session without a subscription",
            session_id=session.get("id"),
        )
        return None
    details = session.get("customer_details") or {}
    return SubscriptionActivated(
        provider=Provider.STRIPE,
        subscription_id=subscription_id,
        event_id=event_id,
        customer_id=customer_id,
        subscriber=_subscriber(
            details.get("email") or session.get("customer_email"),
            details.get("name"),
        ),
    )


def _subscription_changed(
    event_id: str | None, subscription: Mapping[str, Any], deleted: bool
):
    subscription_id = _text(subscription.get("id"))
    if not subscription_id:
        return None
    customer_id, subscriber = customer_details(subscription.get("customer"))
    raw_status = _text(subscription.get("status"))

    if deleted:
        ended = parse_timestamp(
            subscription.get("ended_at") or subscription.get("canceled_at")
        )
        return SubscriptionTerminated(
            provider=Provider.STRIPE,
            subscription_id=subscription_id,
            event_id=event_id,
            customer_id=customer_id,
            cause=TerminationCause.CANCELLED,
            effective_at=ended or utcnow(),
        )

    status = map_stripe_status(raw_status)
    next_billing_at = parse_timestamp(period_end(subscription))

    if status is DonorStatus.ACTIVE:
        return SubscriptionActivated(
            provider=Provider.STRIPE,
            subscription_id=subscription_id,
            event_id=event_id,
            customer_id=customer_id,
            subscriber=subscriber,
            next_billing_at=next_billing_at,
        )

    if status in _TERMINAL_CAUSES:
        return SubscriptionTerminated(
            provider=Provider.STRIPE,
            subscription_id=subscription_id,
            event_id=event_id,
            customer_id=customer_id,
            cause=_TERMINAL_CAUSES[status],
            effective_at=next_billing_at,
        )

    if status is None:
        logfire.info(
            "Stripe subscription update with unmapped status",
            subscription_id=subscription_id,
            status=raw_status,
        )
        return None

    return SubscriptionUpdated(
        provider=Provider.STRIPE,
        subscription_id=subscription_id,
        event_id=event_id,
        customer_id=customer_id,
        status=status,
        raw_status=raw_status,
        subscriber=subscriber,
        next_billing_at=next_billing_at,
    )


def _invoice_paid(event_id: str | None, invoice: Mapping[str, Any]):
    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        return None
    currency = _text(invoice.get("currency"))
    payment_id = _text(invoice.get("payment_intent")) or _text(invoice.get("id"))
    if not payment_id:
        return None
    return PaymentSucceeded(
        provider=Provider.STRIPE,
        subscription_id=subscription_id,
        event_id=event_id,
        customer_id=_text(invoice.get("customer")),
        payment_id=payment_id,
        amount=from_minor_units(invoice.get("amount_paid"), currency),
        currency=currency.upper() if currency else None,
        paid_at=parse_timestamp(invoice.get("created")) or utcnow(),
        subscriber=_subscriber(
            invoice.get("customer_email"), invoice.get("customer_name")
        ),
    )


def _invoice_failed(event_id: str | None, invoice: Mapping[str, Any]):
    subscription_id = invoice_subscription_id(invoice)
    if not subscription_id:
        return None
    attempts = invoice.get("attempt_count")
    return PaymentFailed(
        provider=Provider.STRIPE,
        subscription_id=subscription_id,
        event_id=event_id,
        customer_id=_text(invoice.get("customer")),
        attempt_count=attempts if isinstance(attempts, int) else None,
    )


def translate_stripe_event(event: Mapping[str, Any]) -> SubscriptionEvent | None:
    """Translate a verified Stripe event.

    Args:
        event: Parsed event JSON

    Returns:
        The subscription event, or None for unhandled types and objects that
        do not belong to a subscription
    """
    event_type = event.get("type")
    event_id = _text(event.get("id"))
    obj = (event.get("data") or {}).get("object")
    if not isinstance(obj, Mapping):
        logfire.warn("Stripe event without data object", event_id=event_id)
        return None

    if event_type == "checkout.session.completed":
        return _checkout_completed(event_id, obj)
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        return _subscription_changed(event_id, obj, deleted=False)
    if event_type == "customer.subscription.deleted":
        return _subscription_changed(event_id, obj, deleted=True)
    if event_type == "invoice.payment_succeeded":
        return _invoice_paid(event_id, obj)
    if event_type == "invoice.payment_failed":
        return _invoice_failed(event_id, obj)

    logfire.info("Unhandled Stripe event type", event_type=event_type)
    return None
