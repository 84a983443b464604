"""Stripe client.

Wraps the blocking ``stripe`` SDK; each call runs in a worker thread with a
deadline so the event loop never blocks on Stripe.
"""

import asyncio
import json
from collections.abc import Callable, Mapping
from typing import Any

import logfire

from plexdonate.adapter.error import (
    NotConfiguredError,
    ProviderNotFoundError,
    ProviderResponseError,
    RejectedByProviderError,
    TransportError,
    WebhookVerificationError,
)
from plexdonate.adapter.stripe.parsing import (
    map_stripe_status,
    snapshot_from_subscription,
)
from plexdonate.domain.service.provider import StripeClient
from plexdonate.domain.value import CheckoutSession, DonorStatus, SubscriptionSnapshot

PROVIDER = "stripe"

# Maximum age of a signed payload, in seconds
SIGNATURE_TOLERANCE = 300


def _as_dict(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject into plain nested dicts."""
    for name in ("to_dict_recursive", "to_dict"):
        method = getattr(obj, name, None)
        if callable(method):
            return method()
    return dict(obj)


class RealStripeClient(StripeClient):
    """Stripe client backed by the official SDK."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str = "",
        price_id: str = "",
        success_url: str = "",
        cancel_url: str = "",
        timeout: float = 30.0,
    ) -> None:
        """Initialize Stripe client.

        Args:
            secret_key: ``sk_test_`` or ``sk_live_`` API key
            webhook_secret: ``whsec_`` endpoint secret for signature checks
            price_id: Default recurring price for checkout sessions
            success_url: Default checkout success redirect
            cancel_url: Default checkout cancel redirect
            timeout: Per-call deadline in seconds
        """
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.price_id = price_id
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def _get_stripe(self) -> Any:
        """Lazily import the Stripe library."""
        import stripe

        return stripe

    async def _run(
        self, action: str, func: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Any:
        """Run an SDK call in a thread, translating Stripe errors.

        Raises:
            NotConfiguredError: If no secret key is configured
            RejectedByProviderError: Authentication or permission failure
            ProviderNotFoundError: Resource does not exist
            TransportError: Network failure, timeout, rate limit or 5xx
            ProviderResponseError: Any other Stripe error
        """
        if not self.is_configured:
            raise NotConfiguredError("Stripe secret key is not configured", PROVIDER)

        stripe = self._get_stripe()
        kwargs["api_key"] = self.secret_key
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, **kwargs), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            logfire.warn("Stripe call timed out", action=action)
            raise TransportError(f"{action} timed out", PROVIDER) from e
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            raise RejectedByProviderError(
                f"{action} rejected: {e}", PROVIDER, e.http_status or 401
            ) from e
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise TransportError(f"{action} failed: {e}", PROVIDER) from e
        except stripe.InvalidRequestError as e:
            if e.http_status == 404:
                raise ProviderNotFoundError(f"{action}: {e}", PROVIDER) from e
            raise ProviderResponseError(f"{action} failed: {e}", PROVIDER) from e
        except stripe.StripeError as e:
            if e.http_status and e.http_status >= 500:
                raise TransportError(
                    f"{action} failed: {e}", PROVIDER, e.http_status
                ) from e
            raise ProviderResponseError(f"{action} failed: {e}", PROVIDER) from e

    def construct_webhook_event(
        self, raw_body: bytes, signature: str | None
    ) -> dict[str, Any]:
        if not self.webhook_secret:
            raise NotConfiguredError("Stripe webhook secret is not configured", PROVIDER)
        if not signature:
            raise WebhookVerificationError("Missing stripe-signature header")

        stripe = self._get_stripe()
        payload = raw_body.decode("utf-8")
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, SIGNATURE_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            logfire.warn("Stripe webhook signature invalid", error=str(e))
            raise WebhookVerificationError(f"Invalid stripe-signature: {e}") from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookVerificationError("Invalid webhook payload") from e
        if not isinstance(event, dict):
            raise WebhookVerificationError("Invalid webhook payload")
        return event

    async def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        with logfire.span(
            "stripe_client.get_subscription", subscription_id=subscription_id
        ):
            stripe = self._get_stripe()
            subscription = await self._run(
                f"Fetch Stripe subscription {subscription_id}",
                stripe.Subscription.retrieve,
                subscription_id,
                expand=["customer"],
            )
            return snapshot_from_subscription(_as_dict(subscription))

    async def create_checkout_session(
        self,
        customer_email: str | None = None,
        price_id: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> CheckoutSession:
        """Create a hosted checkout session for a monthly subscription.

        Args:
            customer_email: Prefills the checkout email
            price_id: Recurring price; defaults to the configured price
            success_url: Redirect after payment
            cancel_url: Redirect when the buyer backs out
            metadata: Extra subscription metadata

        Returns:
            Session id and hosted checkout URL
        """
        price = price_id or self.price_id
        if not price:
            raise NotConfiguredError("Stripe price ID is not configured", PROVIDER)

        with logfire.span("stripe_client.create_checkout_session", price_id=price):
            params: dict[str, Any] = {
                "mode": "subscription",
                "line_items": [{"price": price, "quantity": 1}],
                "success_url": success_url or self.success_url,
                "cancel_url": cancel_url or self.cancel_url,
                "allow_promotion_codes": True,
                "billing_address_collection": "auto",
                "subscription_data": {
                    "metadata": {"source": "plex-donate", **(metadata or {})}
                },
            }
            if customer_email:
                params["customer_email"] = customer_email

            stripe = self._get_stripe()
            session = _as_dict(
                await self._run(
                    "Create Stripe checkout session",
                    stripe.checkout.Session.create,
                    **params,
                )
            )
            if not session.get("id") or not session.get("url"):
                raise ProviderResponseError(
                    "Stripe checkout session response missing id or url", PROVIDER
                )
            logfire.info("Stripe checkout session created", session_id=session["id"])
            return CheckoutSession(session_id=session["id"], url=session["url"])

    async def cancel_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        with logfire.span(
            "stripe_client.cancel_subscription", subscription_id=subscription_id
        ):
            stripe = self._get_stripe()
            subscription = await self._run(
                f"Cancel Stripe subscription {subscription_id}",
                stripe.Subscription.cancel,
                subscription_id,
            )
            logfire.info("Stripe subscription cancelled", subscription_id=subscription_id)
            return snapshot_from_subscription(_as_dict(subscription))

    def map_status(self, raw_status: str | None) -> DonorStatus | None:
        return map_stripe_status(raw_status)


class MockStripeClient(StripeClient):
    """Mock Stripe client for testing.

    Accepts ``VALID_SIGNATURE`` as the only good signature and serves
    subscriptions from ``subscriptions``.
    """

    VALID_SIGNATURE = "t=0,v1=mock"

    def __init__(self) -> None:
        self.subscriptions: dict[str, SubscriptionSnapshot] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    @property
    def is_configured(self) -> bool:
        return True

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def construct_webhook_event(
        self, raw_body: bytes, signature: str | None
    ) -> dict[str, Any]:
        self.calls.append(("construct_webhook_event", (raw_body, signature)))
        if signature != self.VALID_SIGNATURE:
            raise WebhookVerificationError("Invalid stripe-signature")
        try:
            return json.loads(raw_body)
        except ValueError as e:
            raise WebhookVerificationError("Invalid webhook payload") from e

    async def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self.calls.append(("get_subscription", (subscription_id,)))
        snapshot = self.subscriptions.get(subscription_id)
        if snapshot is None:
            raise ProviderNotFoundError(
                f"Subscription {subscription_id} not found", PROVIDER
            )
        return snapshot

    async def create_checkout_session(
        self,
        customer_email: str | None = None,
        price_id: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> CheckoutSession:
        self.calls.append(("create_checkout_session", (customer_email, price_id)))
        return CheckoutSession(
            session_id="cs_test_mock", url="https://checkout.stripe.com/c/pay/cs_test_mock"
        )

    async def cancel_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self.calls.append(("cancel_subscription", (subscription_id,)))
        return SubscriptionSnapshot(
            subscription_id=subscription_id,
            status=DonorStatus.CANCELLED,
            raw_status="canceled",
        )

    def map_status(self, raw_status: str | None) -> DonorStatus | None:
        return map_stripe_status(raw_status)
