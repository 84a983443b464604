"""Stripe webhook use case."""

import logfire
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from plexdonate.adapter.error import NotConfiguredError, WebhookVerificationError
from plexdonate.adapter.stripe import translate_stripe_event
from plexdonate.application.error import EventRejectedError, StoreError
from plexdonate.application.service import Reconciler
from plexdonate.application.usecase.base import BaseUseCase
from plexdonate.domain.service import AuditService, StripeClient

from .common import WebhookResponse, reconcile_verified_event


class StripeWebhookRequest(BaseModel):
    """Raw Stripe webhook delivery."""

    signature: str | None = None
    body: bytes


class StripeWebhookUseCase(BaseUseCase):
    """Check the ``stripe-signature`` HMAC, then reconcile the event.

    A delivery failing verification is rejected before anything is written.
    """

    def __init__(
        self,
        stripe_client: StripeClient,
        reconciler: Reconciler,
        audit_service: AuditService,
    ) -> None:
        self.stripe_client = stripe_client
        self.reconciler = reconciler
        self.audit_service = audit_service

    async def execute(self, request: StripeWebhookRequest) -> WebhookResponse:
        """Execute Stripe webhook flow.

        Raises:
            EventRejectedError: If the signature or payload is invalid
            LockTimeoutError: If the subscription lock is not acquired in time
            StoreError: If the store failed
        """
        try:
            payload = self.stripe_client.construct_webhook_event(
                request.body, request.signature
            )
        except (WebhookVerificationError, NotConfiguredError) as e:
            logfire.warn("Stripe webhook rejected", reason=str(e))
            raise EventRejectedError("Webhook signature verification failed", str(e)) from e

        event_type = payload.get("type")
        with logfire.span("stripe_webhook.execute", event_type=event_type):
            try:
                await self.audit_service.log(
                    "stripe.webhook.received",
                    eventType=event_type,
                    eventId=payload.get("id"),
                )
                return await reconcile_verified_event(
                    "stripe",
                    payload,
                    event_type,
                    translate_stripe_event,
                    self.reconciler,
                    self.audit_service,
                )
            except SQLAlchemyError as e:
                logfire.error("Store failed during Stripe webhook", error=str(e))
                raise StoreError("Store failed during Stripe webhook") from e
