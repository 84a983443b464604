"""Translate PayPal webhook events into subscription events."""

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

import logfire

from plexdonate.adapter.common import parse_timestamp
from plexdonate.adapter.paypal.parsing import (
    billing_times,
    extract_subscriber,
    map_paypal_status,
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
from plexdonate.domain.value import Provider, TerminationCause

ACTIVATION_EVENTS = {
    "BILLING.SUBSCRIPTION.ACTIVATED",
    "BILLING.SUBSCRIPTION.RE-ACTIVATED",
}
TERMINATION_EVENTS = {
    "BILLING.SUBSCRIPTION.CANCELLED": TerminationCause.CANCELLED,
    "BILLING.SUBSCRIPTION.SUSPENDED": TerminationCause.SUSPENDED,
    "BILLING.SUBSCRIPTION.EXPIRED": TerminationCause.EXPIRED,
}
PAYMENT_EVENTS = {"PAYMENT.SALE.COMPLETED", "PAYMENT.CAPTURE.COMPLETED"}
PAYMENT_FAILED_EVENTS = {"BILLING.SUBSCRIPTION.PAYMENT.FAILED"}
SUBSCRIPTION_EVENTS = (
    ACTIVATION_EVENTS
    | set(TERMINATION_EVENTS)
    | PAYMENT_FAILED_EVENTS
    | {"BILLING.SUBSCRIPTION.UPDATED"}
)


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def subscription_id_from_payment(resource: Mapping[str, Any]) -> str | None:
    """Find the subscription a sale or capture belongs to.

    PayPal places the reference in different fields depending on the
    payment flow; the first non-blank candidate wins.
    """
    supplementary = (
        resource.get("supplementary_data") or resource.get("supplementaryData") or {}
    )
    related = supplementary.get("related_ids") or supplementary.get("relatedIds") or {}
    candidates = (
        related.get("subscription_id"),
        related.get("billing_agreement_id"),
        related.get("order_id"),
        resource.get("subscription_id"),
        resource.get("custom_id"),
        resource.get("billing_agreement_id"),
        resource.get("custom"),
    )
    for candidate in candidates:
        normalized = _text(candidate)
        if normalized:
            return normalized
    return None


def _amount(resource: Mapping[str, Any]) -> tuple[Decimal | None, str | None]:
    amount = resource.get("amount") or {}
    raw_value = amount.get("total") or amount.get("value")
    currency = (
        amount.get("currency")
        or amount.get("currency_code")
        or resource.get("currency_code")
    )
    value = None
    if raw_value is not None:
        try:
            value = Decimal(str(raw_value))
        except InvalidOperation:
            logfire.warn("Ignoring unparseable PayPal amount", amount=raw_value)
    return value, (str(currency).upper() if currency else None)


def translate_paypal_event(event: Mapping[str, Any]) -> SubscriptionEvent | None:
    """Translate a verified PayPal webhook body.

    Args:
        event: Parsed webhook JSON

    Returns:
        The subscription event, or None for unhandled event types and events
        without a subscription reference
    """
    event_type = event.get("event_type")
    event_id = _text(event.get("id"))
    resource = event.get("resource")
    if not isinstance(resource, Mapping):
        resource = {}

    if event_type in PAYMENT_EVENTS:
        subscription_id = subscription_id_from_payment(resource)
        payment_id = _text(resource.get("id"))
        if not subscription_id or not payment_id:
            logfire.warn(
                "PayPal payment event missing subscription reference",
                event_id=event_id,
                payment_id=payment_id,
            )
            return None
        amount, currency = _amount(resource)
        return PaymentSucceeded(
            provider=Provider.PAYPAL,
            subscription_id=subscription_id,
            event_id=event_id,
            payment_id=payment_id,
            amount=amount,
            currency=currency,
            paid_at=parse_timestamp(resource.get("create_time")) or utcnow(),
        )

    subscription_id = _text(resource.get("id")) or _text(
        resource.get("subscription_id")
    )
    if event_type not in SUBSCRIPTION_EVENTS:
        logfire.info("Unhandled PayPal event type", event_type=event_type)
        return None

    if not subscription_id:
        logfire.warn(
            "PayPal subscription event missing subscription id",
            event_type=event_type,
            event_id=event_id,
        )
        return None

    next_billing, last_payment = billing_times(resource)
    raw_status = _text(resource.get("status"))

    if event_type in ACTIVATION_EVENTS:
        return SubscriptionActivated(
            provider=Provider.PAYPAL,
            subscription_id=subscription_id,
            event_id=event_id,
            subscriber=extract_subscriber(resource),
            last_payment_at=parse_timestamp(last_payment),
            next_billing_at=parse_timestamp(next_billing),
        )

    if event_type in TERMINATION_EVENTS:
        return SubscriptionTerminated(
            provider=Provider.PAYPAL,
            subscription_id=subscription_id,
            event_id=event_id,
            cause=TERMINATION_EVENTS[event_type],
            effective_at=parse_timestamp(next_billing),
        )

    if event_type in PAYMENT_FAILED_EVENTS:
        billing_info = resource.get("billing_info") or {}
        attempts = billing_info.get("failed_payments_count")
        return PaymentFailed(
            provider=Provider.PAYPAL,
            subscription_id=subscription_id,
            event_id=event_id,
            attempt_count=int(attempts) if str(attempts or "").isdigit() else None,
        )

    status = map_paypal_status(raw_status)
    if status is None:
        logfire.info(
            "PayPal subscription update with unmapped status",
            subscription_id=subscription_id,
            status=raw_status,
        )
        return None
    return SubscriptionUpdated(
        provider=Provider.PAYPAL,
        subscription_id=subscription_id,
        event_id=event_id,
        status=status,
        raw_status=raw_status.lower() if raw_status else None,
        subscriber=extract_subscriber(resource),
        next_billing_at=parse_timestamp(next_billing),
    )
