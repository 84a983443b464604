"""Integration tests for SqlPaymentRepository and SqlEventRepository."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from plexdonate.domain.model import DonorFields, PaymentDraft
from plexdonate.domain.repository import (
    DonorRepository,
    EventRepository,
    PaymentRepository,
)
from plexdonate.domain.value import Provider

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _draft(donor_id, payment_id="CAP-1", provider=Provider.PAYPAL, **fields):
    values = {
        "donor_id": donor_id,
        "provider": provider,
        "provider_payment_id": payment_id,
        "amount": Decimal("10.00"),
        "currency": "USD",
        "paid_at": NOW,
    }
    values.update(fields)
    return PaymentDraft(**values)


class TestRecord:
    """Tests for payment recording."""

    @pytest.mark.asyncio
    async def test_duplicate_returns_existing(self, integration_env):
        """The same provider payment id is stored once."""
        # Arrange
        donors = await integration_env.get(DonorRepository)
        payments = await integration_env.get(PaymentRepository)
        donor = await donors.upsert_by_subscription(
            Provider.PAYPAL, "I-1", DonorFields(email="a@x.io")
        )

        # Act
        first = await payments.record(_draft(donor.id))
        second = await payments.record(_draft(donor.id, amount=Decimal("99.00")))

        # Assert
        assert second.id == first.id
        assert second.amount == Decimal("10.00")
        assert len(await payments.list_for_donor(donor.id)) == 1

    @pytest.mark.asyncio
    async def test_ids_are_per_provider(self, integration_env):
        donors = await integration_env.get(DonorRepository)
        payments = await integration_env.get(PaymentRepository)
        donor = await donors.upsert_by_subscription(
            Provider.PAYPAL, "I-1", DonorFields(email="a@x.io")
        )

        await payments.record(_draft(donor.id, "X-1"))
        await payments.record(_draft(donor.id, "X-1", provider=Provider.STRIPE))

        assert len(await payments.list_for_donor(donor.id)) == 2
        found = await payments.find_by_provider_payment_id(Provider.STRIPE, "X-1")
        assert found.provider == Provider.STRIPE

    @pytest.mark.asyncio
    async def test_listed_newest_first(self, integration_env):
        donors = await integration_env.get(DonorRepository)
        payments = await integration_env.get(PaymentRepository)
        donor = await donors.upsert_by_subscription(
            Provider.PAYPAL, "I-1", DonorFields(email="a@x.io")
        )
        await payments.record(_draft(donor.id, "OLD", paid_at=NOW - timedelta(days=30)))
        await payments.record(_draft(donor.id, "NEW"))

        listed = await payments.list_for_donor(donor.id)

        assert [p.provider_payment_id for p in listed] == ["NEW", "OLD"]
        assert listed[0].paid_at == NOW


class TestEvents:
    @pytest.mark.asyncio
    async def test_log_and_list(self, integration_env):
        events = await integration_env.get(EventRepository)
        await events.log("donor.created", {"donor_id": 1})
        await events.log("plex.revoked", {"donor_id": 1})

        recent = await events.list_recent(event_type="donor.created")

        assert [e.payload for e in recent] == [{"donor_id": 1}]
        assert len(await events.list_recent()) == 2
