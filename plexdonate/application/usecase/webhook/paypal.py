"""PayPal webhook use case."""

import json

import logfire
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from plexdonate.adapter.error import ProviderError
from plexdonate.adapter.paypal import translate_paypal_event
from plexdonate.application.error import EventRejectedError, StoreError
from plexdonate.application.service import Reconciler
from plexdonate.application.usecase.base import BaseUseCase
from plexdonate.domain.service import AuditService, PayPalClient

from .common import WebhookResponse, reconcile_verified_event


class PayPalWebhookRequest(BaseModel):
    """Raw PayPal webhook delivery."""

    headers: dict[str, str]
    body: bytes


class PayPalWebhookUseCase(BaseUseCase):
    """Verify a PayPal delivery with PayPal, then reconcile it."""

    def __init__(
        self,
        paypal_client: PayPalClient,
        reconciler: Reconciler,
        audit_service: AuditService,
    ) -> None:
        """Initialize PayPal webhook use case.

        Args:
            paypal_client: PayPal facade used for signature verification
            reconciler: Event reconciler
            audit_service: Audit trail
        """
        self.paypal_client = paypal_client
        self.reconciler = reconciler
        self.audit_service = audit_service

    async def execute(self, request: PayPalWebhookRequest) -> WebhookResponse:
        """Execute PayPal webhook flow.

        Args:
            request: Headers and byte-exact body of the delivery

        Returns:
            Acknowledgement with the reconcile outcome

        Raises:
            EventRejectedError: If the body is not JSON or verification fails
            LockTimeoutError: If the subscription lock is not acquired in time
            StoreError: If the store failed
        """
        try:
            payload = json.loads(request.body)
        except ValueError as e:
            logfire.warn("PayPal webhook body is not JSON")
            raise EventRejectedError("Invalid webhook payload", "invalid_json") from e
        if not isinstance(payload, dict):
            raise EventRejectedError("Invalid webhook payload", "invalid_json")

        event_type = payload.get("event_type")
        with logfire.span("paypal_webhook.execute", event_type=event_type):
            try:
                return await self._process(request, payload, event_type)
            except SQLAlchemyError as e:
                logfire.error("Store failed during PayPal webhook", error=str(e))
                raise StoreError("Store failed during PayPal webhook") from e

    async def _process(
        self, request: PayPalWebhookRequest, payload: dict, event_type: str | None
    ) -> WebhookResponse:
        await self.audit_service.log(
            "paypal.webhook.received",
            eventType=event_type,
            eventId=payload.get("id"),
        )

        try:
            verification = await self.paypal_client.verify_webhook_signature(
                request.headers, request.body
            )
        except ProviderError as e:
            await self._reject(event_type, f"Verification call failed: {e}")
        else:
            if not verification.verified:
                await self._reject(
                    event_type, verification.reason or "Signature verification failed"
                )

        return await reconcile_verified_event(
            "paypal",
            payload,
            event_type,
            translate_paypal_event,
            self.reconciler,
            self.audit_service,
        )

    async def _reject(self, event_type: str | None, reason: str) -> None:
        logfire.warn("PayPal webhook rejected", event_type=event_type, reason=reason)
        await self.audit_service.log(
            "paypal.webhook.rejected", eventType=event_type, reason=reason
        )
        raise EventRejectedError("Webhook signature verification failed", reason)
