"""Unit tests for the Stripe webhook use case."""

import json

import pytest

from plexdonate.adapter.stripe import MockStripeClient
from plexdonate.application.error import EventRejectedError
from plexdonate.application.usecase.webhook import (
    StripeWebhookRequest,
    StripeWebhookUseCase,
)
from plexdonate.domain.value import DonorStatus
from tests.factories import add_donor, event_types
from tests.harness import create_env_fixture

unit_env = create_env_fixture()

CHECKOUT_COMPLETED = {
    "id": "evt_1",
    "type": "checkout.session.completed",
    "data": {
        "object": {
            "id": "cs_1",
            "mode": "subscription",
            "subscription": "sub_1",
            "customer": "cus_1",
            "customer_details": {"email": "s@example.com", "name": "Sam"},
        }
    },
}


def _request(payload: dict, signature: str | None = MockStripeClient.VALID_SIGNATURE):
    return StripeWebhookRequest(signature=signature, body=json.dumps(payload).encode())


class TestStripeWebhook:
    """Tests for StripeWebhookUseCase."""

    @pytest.mark.asyncio
    async def test_checkout_completed_activates_donor(self, unit_env, db, mail):
        """A completed checkout creates an active Stripe donor with an invite."""
        # Arrange
        use_case = await unit_env.get(StripeWebhookUseCase)

        # Act
        response = await use_case.execute(_request(CHECKOUT_COMPLETED))

        # Assert
        assert response.outcome == "activated"
        donor = next(iter(db.donors.values()))
        assert donor.stripe_subscription_id == "sub_1"
        assert donor.stripe_customer_id == "cus_1"
        assert donor.status == DonorStatus.ACTIVE
        assert len(mail.sent_with("invite")) == 1
        assert event_types(db)[0] == "stripe.webhook.received"

    @pytest.mark.asyncio
    async def test_bad_signature_writes_nothing(self, unit_env, db, mail):
        """A delivery with a wrong signature leaves no trace in the store."""
        # Arrange
        use_case = await unit_env.get(StripeWebhookUseCase)

        # Act & Assert
        with pytest.raises(EventRejectedError):
            await use_case.execute(_request(CHECKOUT_COMPLETED, signature="t=1,v1=bad"))

        assert db.donors == {}
        assert db.events == []
        assert mail.sent == []

    @pytest.mark.asyncio
    async def test_missing_signature_is_rejected(self, unit_env, db):
        """Deliveries without the header are rejected."""
        # Arrange
        use_case = await unit_env.get(StripeWebhookUseCase)

        # Act & Assert
        with pytest.raises(EventRejectedError):
            await use_case.execute(_request(CHECKOUT_COMPLETED, signature=None))
        assert db.events == []

    @pytest.mark.asyncio
    async def test_subscription_deleted_terminates(self, unit_env, db, plex):
        """A deleted subscription ends access at once."""
        # Arrange
        use_case = await unit_env.get(StripeWebhookUseCase)
        donor = add_donor(
            db,
            payment_provider="stripe",
            subscription_id=None,
            stripe_subscription_id="sub_9",
            stripe_customer_id="cus_9",
        )

        # Act
        response = await use_case.execute(
            _request(
                {
                    "id": "evt_2",
                    "type": "customer.subscription.deleted",
                    "data": {
                        "object": {
                            "id": "sub_9",
                            "customer": "cus_9",
                            "status": "canceled",
                            "ended_at": 1704067200,
                        }
                    },
                }
            )
        )

        # Assert
        assert response.outcome == "terminated"
        stored = db.donors[donor.id]
        assert stored.status == DonorStatus.CANCELLED
        assert stored.access_expires_at is None
        assert len(plex.calls_to("revoke_user")) == 1

    @pytest.mark.asyncio
    async def test_invoice_paid_records_minor_units(self, unit_env, db):
        """Invoice amounts are converted from cents."""
        # Arrange
        use_case = await unit_env.get(StripeWebhookUseCase)
        add_donor(
            db,
            payment_provider="stripe",
            subscription_id=None,
            stripe_subscription_id="sub_5",
        )

        # Act
        await use_case.execute(
            _request(
                {
                    "id": "evt_3",
                    "type": "invoice.payment_succeeded",
                    "data": {
                        "object": {
                            "id": "in_1",
                            "subscription": "sub_5",
                            "payment_intent": "pi_1",
                            "amount_paid": 1000,
                            "currency": "usd",
                            "created": 1704067200,
                        }
                    },
                }
            )
        )

        # Assert
        payment = next(iter(db.payments.values()))
        assert str(payment.amount) == "10.00"
        assert payment.currency == "USD"
        assert payment.provider_payment_id == "pi_1"
