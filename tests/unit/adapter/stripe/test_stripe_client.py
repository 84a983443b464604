"""Unit tests for the Stripe client."""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from plexdonate.adapter.error import (
    NotConfiguredError,
    ProviderNotFoundError,
    TransportError,
    WebhookVerificationError,
)
from plexdonate.adapter.stripe import RealStripeClient
from plexdonate.domain.value import DonorStatus

SECRET = "whsec_test"


def _sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _client(**kwargs) -> RealStripeClient:
    values = {"secret_key": "sk_test_123", "webhook_secret": SECRET}
    values.update(kwargs)
    return RealStripeClient(**values)


class TestConstructWebhookEvent:
    """Tests for stripe-signature verification."""

    def test_valid_signature(self):
        """A correctly signed body is parsed."""
        body = json.dumps({"id": "evt_1", "type": "invoice.payment_failed"}).encode()

        event = _client().construct_webhook_event(body, _sign(body))

        assert event["id"] == "evt_1"

    def test_tampered_body(self):
        """Any change to the body invalidates the signature."""
        body = b'{"id": "evt_1"}'
        signature = _sign(body)

        with pytest.raises(WebhookVerificationError):
            _client().construct_webhook_event(b'{"id": "evt_2"}', signature)

    def test_wrong_secret(self):
        body = b'{"id": "evt_1"}'

        with pytest.raises(WebhookVerificationError):
            _client().construct_webhook_event(body, _sign(body, secret="whsec_other"))

    def test_stale_timestamp(self):
        """Signatures older than the tolerance are rejected."""
        body = b'{"id": "evt_1"}'
        signature = _sign(body, timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookVerificationError):
            _client().construct_webhook_event(body, signature)

    def test_missing_signature(self):
        with pytest.raises(WebhookVerificationError):
            _client().construct_webhook_event(b"{}", None)

    def test_missing_secret(self):
        with pytest.raises(NotConfiguredError):
            _client(webhook_secret="").construct_webhook_event(b"{}", "t=1,v1=x")

    def test_signed_non_object(self):
        body = b"[1, 2]"

        with pytest.raises(WebhookVerificationError):
            _client().construct_webhook_event(body, _sign(body))


class TestSdkCalls:
    """Tests for SDK calls and error translation."""

    @pytest.mark.asyncio
    async def test_get_subscription(self, monkeypatch):
        calls = []

        def retrieve(subscription_id, **kwargs):
            calls.append((subscription_id, kwargs))
            return {
                "id": subscription_id,
                "status": "past_due",
                "customer": {"id": "cus_1", "email": "c@example.com"},
            }

        monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve)

        snapshot = await _client().get_subscription("sub_1")

        assert snapshot.status == DonorStatus.PAST_DUE
        assert snapshot.customer_id == "cus_1"
        assert calls == [("sub_1", {"expand": ["customer"], "api_key": "sk_test_123"})]

    @pytest.mark.asyncio
    async def test_not_found(self, monkeypatch):
        def retrieve(subscription_id, **kwargs):
            raise stripe.InvalidRequestError(
                "No such subscription", "id", http_status=404
            )

        monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve)

        with pytest.raises(ProviderNotFoundError):
            await _client().get_subscription("sub_x")

    @pytest.mark.asyncio
    async def test_connection_error(self, monkeypatch):
        def retrieve(subscription_id, **kwargs):
            raise stripe.APIConnectionError("network down")

        monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve)

        with pytest.raises(TransportError):
            await _client().get_subscription("sub_x")

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        with pytest.raises(NotConfiguredError):
            await _client(secret_key="").get_subscription("sub_1")

    @pytest.mark.asyncio
    async def test_checkout_requires_price(self):
        with pytest.raises(NotConfiguredError):
            await _client().create_checkout_session(customer_email="a@example.com")

    @pytest.mark.asyncio
    async def test_checkout_session(self, monkeypatch):
        captured = {}

        def create(**kwargs):
            captured.update(kwargs)
            return {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}

        monkeypatch.setattr(stripe.checkout.Session, "create", create)

        session = await _client(price_id="price_1").create_checkout_session(
            customer_email="a@example.com", metadata={"donor": "7"}
        )

        assert session.session_id == "cs_1"
        assert captured["mode"] == "subscription"
        assert captured["line_items"] == [{"price": "price_1", "quantity": 1}]
        assert captured["customer_email"] == "a@example.com"
        assert captured["subscription_data"]["metadata"] == {
            "source": "plex-donate",
            "donor": "7",
        }

    @pytest.mark.asyncio
    async def test_cancel_subscription(self, monkeypatch):
        def cancel(subscription_id, **kwargs):
            return {"id": subscription_id, "status": "canceled", "customer": "cus_1"}

        monkeypatch.setattr(stripe.Subscription, "cancel", cancel)

        snapshot = await _client().cancel_subscription("sub_1")

        assert snapshot.status == DonorStatus.CANCELLED
        assert snapshot.customer_id == "cus_1"
