"""PayPal REST client.

Talks to the v1 OAuth, notifications, billing and catalog endpoints.
"""

import json
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import httpx
import logfire

from plexdonate.adapter.common import check_response, read_json, send_request
from plexdonate.adapter.error import (
    NotConfiguredError,
    ProviderNotFoundError,
    ProviderResponseError,
)
from plexdonate.adapter.paypal.parsing import (
    build_subscriber_details,
    snapshot_from_resource,
)
from plexdonate.domain.service.provider import PayPalClient
from plexdonate.domain.value import (
    PlanResult,
    Subscriber,
    SubscriptionCreation,
    SubscriptionSnapshot,
    WebhookVerification,
)

PROVIDER = "paypal"

SANDBOX_CHECKOUT_URL = "https://www.sandbox.paypal.com/webapps/billing/subscriptions"
LIVE_CHECKOUT_URL = "https://www.paypal.com/webapps/billing/subscriptions"

# Header name -> verify-webhook-signature field
VERIFICATION_HEADERS = {
    "paypal-auth-algo": "auth_algo",
    "paypal-cert-url": "cert_url",
    "paypal-transmission-id": "transmission_id",
    "paypal-transmission-sig": "transmission_sig",
    "paypal-transmission-time": "transmission_time",
}


def paypal_environment(api_base: str | None) -> str:
    """Return ``"sandbox"`` or ``"live"`` for an API base URL."""
    if not api_base:
        return "live"
    return "sandbox" if "sandbox" in api_base.lower() else "live"


class RealPayPalClient(PayPalClient):
    """PayPal client backed by the REST API."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        webhook_id: str = "",
        api_base: str = "https://api-m.sandbox.paypal.com",
        plan_id: str = "",
        product_id: str = "",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize PayPal client.

        Args:
            client_id: REST app client id
            client_secret: REST app secret
            webhook_id: Id of the registered webhook, used for verification
            api_base: API root, sandbox or live
            plan_id: Configured billing plan, reused by ensure_plan
            product_id: Configured catalog product
            timeout: Per-request deadline in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_id = webhook_id
        self.api_base = (api_base or "https://api-m.sandbox.paypal.com").rstrip("/")
        self.plan_id = plan_id
        self.product_id = product_id
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _require_credentials(self) -> None:
        if not self.is_configured:
            raise NotConfiguredError("PayPal credentials are not configured", PROVIDER)

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        """Exchange client credentials for a bearer token.

        Raises:
            NotConfiguredError: If credentials are missing
            RejectedByProviderError: If PayPal refuses the credentials
        """
        self._require_credentials()
        response = await send_request(
            client,
            "POST",
            f"{self.api_base}/v1/oauth2/token",
            PROVIDER,
            "PayPal access token request",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        check_response(response, PROVIDER, "PayPal access token request")
        data = read_json(response, PROVIDER, "PayPal access token request")
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise ProviderResponseError(
                "PayPal token response did not include an access token", PROVIDER
            )
        return token

    async def _call(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        action: str,
        payload: Any = None,
    ) -> Any:
        token = await self._get_access_token(client)
        response = await send_request(
            client,
            method,
            f"{self.api_base}{path}",
            PROVIDER,
            action,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        check_response(response, PROVIDER, action)
        return read_json(response, PROVIDER, action)

    async def verify_connection(self) -> None:
        with logfire.span("paypal_client.verify_connection"):
            async with self._http() as client:
                token = await self._get_access_token(client)
            logfire.info("PayPal credentials verified", token_length=len(token))

    async def verify_webhook_signature(
        self, headers: Mapping[str, str], raw_body: bytes
    ) -> WebhookVerification:
        with logfire.span("paypal_client.verify_webhook_signature"):
            if not self.webhook_id:
                return WebhookVerification(
                    verified=False, reason="Missing PayPal webhook id"
                )

            try:
                webhook_event = json.loads(raw_body)
            except ValueError:
                return WebhookVerification(
                    verified=False, reason="Invalid webhook payload"
                )

            lowered = {key.lower(): value for key, value in headers.items()}
            payload: dict[str, Any] = {
                field: lowered.get(header)
                for header, field in VERIFICATION_HEADERS.items()
            }
            payload["webhook_id"] = self.webhook_id
            payload["webhook_event"] = webhook_event

            async with self._http() as client:
                data = await self._call(
                    client,
                    "POST",
                    "/v1/notifications/verify-webhook-signature",
                    "PayPal webhook verification",
                    payload,
                )

            status = data.get("verification_status") if isinstance(data, dict) else None
            verified = status == "SUCCESS"
            if not verified:
                logfire.warn(
                    "PayPal webhook signature rejected",
                    verification_status=status,
                    transmission_id=payload.get("transmission_id"),
                )
                return WebhookVerification(
                    verified=False,
                    reason=f"Verification status {status or 'missing'}",
                )
            return WebhookVerification(verified=True)

    async def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        with logfire.span(
            "paypal_client.get_subscription", subscription_id=subscription_id
        ):
            async with self._http() as client:
                data = await self._call(
                    client,
                    "GET",
                    f"/v1/billing/subscriptions/{quote(subscription_id, safe='')}",
                    f"Fetch PayPal subscription {subscription_id}",
                )
            if not isinstance(data, dict):
                raise ProviderResponseError(
                    "PayPal subscription response was not an object", PROVIDER
                )
            return snapshot_from_resource(data, subscription_id)

    async def create_subscription(
        self,
        plan_id: str,
        subscriber: Subscriber,
        return_url: str | None = None,
        cancel_url: str | None = None,
    ) -> SubscriptionCreation:
        """Create a subscription that the buyer must approve.

        Args:
            plan_id: Billing plan to subscribe to
            subscriber: Prefilled subscriber details
            return_url: Where PayPal sends the buyer after approval
            cancel_url: Where PayPal sends the buyer on cancel

        Returns:
            Subscription id and the buyer approval URL

        Raises:
            ProviderResponseError: If the response lacks an id or approve link
        """
        if not plan_id:
            raise NotConfiguredError(
                "PayPal plan ID is required to create a subscription", PROVIDER
            )

        with logfire.span("paypal_client.create_subscription", plan_id=plan_id):
            payload: dict[str, Any] = {"plan_id": plan_id}
            details = build_subscriber_details(subscriber.email, subscriber.name)
            if details:
                payload["subscriber"] = details
            if return_url or cancel_url:
                context: dict[str, str] = {}
                if return_url:
                    context["return_url"] = return_url
                if cancel_url:
                    context["cancel_url"] = cancel_url
                payload["application_context"] = context

            async with self._http() as client:
                data = await self._call(
                    client,
                    "POST",
                    "/v1/billing/subscriptions",
                    "Create PayPal subscription",
                    payload,
                )

            links = data.get("links") if isinstance(data, dict) else None
            approval_url = None
            for link in links or []:
                if isinstance(link, dict) and link.get("rel") == "approve":
                    approval_url = link.get("href")
                    break
            if not approval_url:
                raise ProviderResponseError(
                    "PayPal subscription response did not include an approval URL",
                    PROVIDER,
                )
            if not data.get("id"):
                raise ProviderResponseError(
                    "PayPal subscription response did not include an ID", PROVIDER
                )

            logfire.info("PayPal subscription created", subscription_id=data["id"])
            return SubscriptionCreation(
                subscription_id=data["id"], approval_url=approval_url
            )

    async def ensure_plan(
        self, price: float, currency: str, product_id: str | None = None
    ) -> PlanResult:
        """Return a monthly plan for the price, creating one if needed.

        The configured plan is reused when its regular price and currency
        match; otherwise a product is created (unless one is known) and a new
        monthly plan is attached to it.
        """
        if not price or price <= 0:
            raise NotConfiguredError(
                "A positive subscription price is required", PROVIDER
            )
        currency = (currency or "USD").strip().upper()

        with logfire.span(
            "paypal_client.ensure_plan", price=price, currency=currency
        ):
            async with self._http() as client:
                if self.plan_id:
                    existing = await self._matching_plan(client, price, currency)
                    if existing is not None:
                        return existing

                product = product_id or self.product_id
                if not product:
                    created_product = await self._call(
                        client,
                        "POST",
                        "/v1/catalogs/products",
                        "Create PayPal product",
                        {
                            "name": "Plex Donate Subscription",
                            "type": "SERVICE",
                            "category": "SOFTWARE",
                        },
                    )
                    product = created_product.get("id")
                    if not product:
                        raise ProviderResponseError(
                            "PayPal product response did not include an ID", PROVIDER
                        )

                plan = await self._call(
                    client,
                    "POST",
                    "/v1/billing/plans",
                    "Create PayPal plan",
                    {
                        "product_id": product,
                        "name": "Plex Donate Monthly",
                        "status": "ACTIVE",
                        "billing_cycles": [
                            {
                                "frequency": {
                                    "interval_unit": "MONTH",
                                    "interval_count": 1,
                                },
                                "tenure_type": "REGULAR",
                                "sequence": 1,
                                "total_cycles": 0,
                                "pricing_scheme": {
                                    "fixed_price": {
                                        "value": f"{price:.2f}",
                                        "currency_code": currency,
                                    }
                                },
                            }
                        ],
                        "payment_preferences": {
                            "auto_bill_outstanding": True,
                            "payment_failure_threshold": 3,
                        },
                    },
                )
            plan_id = plan.get("id")
            if not plan_id:
                raise ProviderResponseError(
                    "PayPal plan response did not include an ID", PROVIDER
                )

            logfire.info("PayPal plan created", plan_id=plan_id, product_id=product)
            return PlanResult(plan_id=plan_id, product_id=product, created=True)

    async def _matching_plan(
        self, client: httpx.AsyncClient, price: float, currency: str
    ) -> PlanResult | None:
        try:
            plan = await self._call(
                client,
                "GET",
                f"/v1/billing/plans/{quote(self.plan_id, safe='')}",
                "Fetch PayPal plan",
            )
        except ProviderNotFoundError:
            logfire.warn("Configured PayPal plan not found", plan_id=self.plan_id)
            return None

        for cycle in plan.get("billing_cycles") or []:
            if cycle.get("tenure_type") != "REGULAR":
                continue
            fixed = (cycle.get("pricing_scheme") or {}).get("fixed_price") or {}
            try:
                value = float(fixed.get("value"))
            except (TypeError, ValueError):
                continue
            if (
                abs(value - price) < 0.005
                and str(fixed.get("currency_code", "")).upper() == currency
            ):
                return PlanResult(
                    plan_id=self.plan_id,
                    product_id=plan.get("product_id") or self.product_id,
                    created=False,
                )
        return None

    def checkout_url(self, plan_id: str) -> str:
        if not plan_id:
            return ""
        base = (
            SANDBOX_CHECKOUT_URL
            if paypal_environment(self.api_base) == "sandbox"
            else LIVE_CHECKOUT_URL
        )
        return f"{base}?plan_id={quote(plan_id, safe='')}"


class MockPayPalClient(PayPalClient):
    """Mock PayPal client for testing.

    Subscriptions are served from ``subscriptions``; every call is recorded
    in ``calls`` as ``(method, args)``.
    """

    def __init__(self) -> None:
        self.subscriptions: dict[str, SubscriptionSnapshot] = {}
        self.verification = WebhookVerification(verified=True)
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    @property
    def is_configured(self) -> bool:
        return True

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.failures:
            raise self.failures[method]

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    async def verify_connection(self) -> None:
        self._record("verify_connection")

    async def verify_webhook_signature(
        self, headers: Mapping[str, str], raw_body: bytes
    ) -> WebhookVerification:
        self._record("verify_webhook_signature", dict(headers), raw_body)
        return self.verification

    async def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self._record("get_subscription", subscription_id)
        snapshot = self.subscriptions.get(subscription_id)
        if snapshot is None:
            raise ProviderNotFoundError(
                f"Subscription {subscription_id} not found", PROVIDER
            )
        return snapshot

    async def create_subscription(
        self,
        plan_id: str,
        subscriber: Subscriber,
        return_url: str | None = None,
        cancel_url: str | None = None,
    ) -> SubscriptionCreation:
        self._record("create_subscription", plan_id, subscriber)
        subscription_id = f"I-MOCK{len(self.calls_to('create_subscription'))}"
        return SubscriptionCreation(
            subscription_id=subscription_id,
            approval_url=f"https://www.sandbox.paypal.com/approve?token={subscription_id}",
        )

    async def ensure_plan(
        self, price: float, currency: str, product_id: str | None = None
    ) -> PlanResult:
        self._record("ensure_plan", price, currency, product_id)
        return PlanResult(
            plan_id="P-MOCK", product_id=product_id or "PROD-MOCK", created=False
        )

    def checkout_url(self, plan_id: str) -> str:
        return f"{SANDBOX_CHECKOUT_URL}?plan_id={quote(plan_id, safe='')}"
