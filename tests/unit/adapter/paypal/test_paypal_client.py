"""Unit tests for the PayPal REST client."""

import json

import httpx
import pytest

from plexdonate.adapter.error import (
    NotConfiguredError,
    ProviderNotFoundError,
    RejectedByProviderError,
    TransportError,
)
from plexdonate.adapter.paypal import RealPayPalClient
from plexdonate.adapter.paypal.client import paypal_environment
from plexdonate.domain.value import DonorStatus, Subscriber

API = "https://api-m.sandbox.paypal.com"


class FakePayPal:
    """Routes requests to canned responses and records them."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "token-1"})
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})
        return response

    def last(self, path: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path == path][-1]


def _client(fake, **kwargs) -> RealPayPalClient:
    values = {
        "client_id": "id",
        "client_secret": "secret",
        "webhook_id": "WH-ID",
        "api_base": API,
        "transport": httpx.MockTransport(fake),
    }
    values.update(kwargs)
    return RealPayPalClient(**values)


class TestGetSubscription:
    """Tests for get_subscription."""

    @pytest.mark.asyncio
    async def test_returns_snapshot(self):
        """The subscription resource is normalized into a snapshot."""
        fake = FakePayPal(
            {
                ("GET", "/v1/billing/subscriptions/I-ABC"): httpx.Response(
                    200,
                    json={
                        "id": "I-ABC",
                        "status": "ACTIVE",
                        "subscriber": {"email_address": "a@x.io"},
                    },
                )
            }
        )

        snapshot = await _client(fake).get_subscription("I-ABC")

        assert snapshot.status == DonorStatus.ACTIVE
        assert snapshot.subscriber.email == "a@x.io"
        request = fake.last("/v1/billing/subscriptions/I-ABC")
        assert request.headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_missing_subscription(self):
        with pytest.raises(ProviderNotFoundError):
            await _client(FakePayPal({})).get_subscription("I-NOPE")

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self):
        fake = FakePayPal(
            {("GET", "/v1/billing/subscriptions/I-ABC"): httpx.Response(503)}
        )

        with pytest.raises(TransportError) as exc_info:
            await _client(fake).get_subscription("I-ABC")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "invalid_client"})

        client = _client(handler)

        with pytest.raises(RejectedByProviderError):
            await client.get_subscription("I-ABC")

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)

        with pytest.raises(TransportError):
            await client.get_subscription("I-ABC")

    @pytest.mark.asyncio
    async def test_requires_credentials(self):
        with pytest.raises(NotConfiguredError):
            await _client(FakePayPal({}), client_secret="").get_subscription("I-ABC")


class TestVerifyWebhookSignature:
    """Tests for verify_webhook_signature."""

    @pytest.mark.asyncio
    async def test_success(self):
        """Headers are forwarded case-insensitively with the parsed body."""
        fake = FakePayPal(
            {
                ("POST", "/v1/notifications/verify-webhook-signature"): httpx.Response(
                    200, json={"verification_status": "SUCCESS"}
                )
            }
        )
        body = b'{"id": "WH-1", "event_type": "BILLING.SUBSCRIPTION.ACTIVATED"}'

        result = await _client(fake).verify_webhook_signature(
            {"PayPal-Transmission-Id": "tx-1", "paypal-auth-algo": "SHA256withRSA"},
            body,
        )

        assert result.verified is True
        sent = json.loads(
            fake.last("/v1/notifications/verify-webhook-signature").content
        )
        assert sent["transmission_id"] == "tx-1"
        assert sent["auth_algo"] == "SHA256withRSA"
        assert sent["webhook_id"] == "WH-ID"
        assert sent["webhook_event"]["id"] == "WH-1"

    @pytest.mark.asyncio
    async def test_failure_status(self):
        fake = FakePayPal(
            {
                ("POST", "/v1/notifications/verify-webhook-signature"): httpx.Response(
                    200, json={"verification_status": "FAILURE"}
                )
            }
        )

        result = await _client(fake).verify_webhook_signature({}, b"{}")

        assert result.verified is False
        assert result.reason == "Verification status FAILURE"

    @pytest.mark.asyncio
    async def test_missing_webhook_id(self):
        fake = FakePayPal({})

        result = await _client(fake, webhook_id="").verify_webhook_signature({}, b"{}")

        assert result.verified is False
        assert fake.requests == []


class TestSubscriptionsAndPlans:
    """Tests for create_subscription and ensure_plan."""

    @pytest.mark.asyncio
    async def test_create_subscription_returns_approval_link(self):
        fake = FakePayPal(
            {
                ("POST", "/v1/billing/subscriptions"): httpx.Response(
                    201,
                    json={
                        "id": "I-NEW",
                        "links": [
                            {"rel": "self", "href": "https://x"},
                            {"rel": "approve", "href": "https://approve"},
                        ],
                    },
                )
            }
        )

        created = await _client(fake).create_subscription(
            "P-1", Subscriber(email="a@x.io", name="Ada King"), return_url="https://r"
        )

        assert created.subscription_id == "I-NEW"
        assert created.approval_url == "https://approve"
        sent = json.loads(fake.last("/v1/billing/subscriptions").content)
        assert sent["subscriber"]["name"] == {"given_name": "Ada", "surname": "King"}
        assert sent["application_context"] == {"return_url": "https://r"}

    @pytest.mark.asyncio
    async def test_matching_plan_is_reused(self):
        fake = FakePayPal(
            {
                ("GET", "/v1/billing/plans/P-1"): httpx.Response(
                    200,
                    json={
                        "id": "P-1",
                        "product_id": "PROD-1",
                        "billing_cycles": [
                            {
                                "tenure_type": "REGULAR",
                                "pricing_scheme": {
                                    "fixed_price": {"value": "5.00", "currency_code": "USD"}
                                },
                            }
                        ],
                    },
                )
            }
        )

        plan = await _client(fake, plan_id="P-1").ensure_plan(5, "usd")

        assert plan.plan_id == "P-1"
        assert plan.created is False

    @pytest.mark.asyncio
    async def test_new_plan_when_price_differs(self):
        fake = FakePayPal(
            {
                ("POST", "/v1/catalogs/products"): httpx.Response(
                    201, json={"id": "PROD-NEW"}
                ),
                ("POST", "/v1/billing/plans"): httpx.Response(201, json={"id": "P-NEW"}),
            }
        )

        plan = await _client(fake).ensure_plan(7.5, "EUR")

        assert plan.plan_id == "P-NEW"
        assert plan.product_id == "PROD-NEW"
        assert plan.created is True
        sent = json.loads(fake.last("/v1/billing/plans").content)
        fixed = sent["billing_cycles"][0]["pricing_scheme"]["fixed_price"]
        assert fixed == {"value": "7.50", "currency_code": "EUR"}


class TestCheckoutUrl:
    """Tests for checkout URLs and environment detection."""

    def test_sandbox_and_live(self):
        assert paypal_environment(API) == "sandbox"
        assert paypal_environment("https://api-m.paypal.com") == "live"
        assert _client(FakePayPal({})).checkout_url("P 1").endswith("plan_id=P%201")
        live = _client(FakePayPal({}), api_base="https://api-m.paypal.com")
        assert live.checkout_url("P-1").startswith("https://www.paypal.com/")
