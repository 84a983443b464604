"""Shared webhook ingestion steps."""

from collections.abc import Callable, Mapping
from typing import Any

import logfire
from pydantic import BaseModel, ValidationError

from plexdonate.application.error import EventRejectedError
from plexdonate.application.service import Reconciler
from plexdonate.domain.model import SubscriptionEvent
from plexdonate.domain.service import AuditService


class WebhookResponse(BaseModel):
    """Webhook acknowledgement."""

    received: bool = True
    event_type: str | None = None
    outcome: str


async def reconcile_verified_event(
    provider: str,
    payload: Mapping[str, Any],
    event_type: str | None,
    translate: Callable[[Mapping[str, Any]], SubscriptionEvent | None],
    reconciler: Reconciler,
    audit_service: AuditService,
) -> WebhookResponse:
    """Translate a verified payload, apply it, and audit the outcome.

    Raises:
        EventRejectedError: If the payload fails validation
        LockTimeoutError: If the subscription lock is not acquired in time
        StoreError: If the store failed
    """
    try:
        event = translate(payload)
    except ValidationError as e:
        logfire.warn(
            "Webhook payload invalid",
            provider=provider,
            event_type=event_type,
            error=str(e),
        )
        await audit_service.log(
            f"{provider}.webhook.rejected",
            eventType=event_type,
            reason="invalid_payload",
        )
        raise EventRejectedError("Invalid webhook payload", "invalid_payload") from e

    if event is None:
        outcome = "ignored"
        subscription_id = None
    else:
        result = await reconciler.handle(event)
        outcome = result.outcome
        subscription_id = event.subscription_id

    await audit_service.log(
        "webhook.event.processed",
        provider=provider,
        eventType=event_type,
        eventId=payload.get("id"),
        subscriptionId=subscription_id,
        outcome=outcome,
    )
    logfire.info(
        "Webhook processed",
        provider=provider,
        event_type=event_type,
        outcome=outcome,
    )
    return WebhookResponse(event_type=event_type, outcome=outcome)
