"""Unit tests for the background Sweeper."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from plexdonate.adapter.error import TransportError
from plexdonate.application.service import AccessController, Sweeper
from plexdonate.application.service.sweeper import expiration_event
from plexdonate.config import SweeperSettings
from plexdonate.domain.service import MailClient, PayPalClient, PlexClient
from plexdonate.domain.value import DonorStatus, Provider, SubscriptionSnapshot
from plexdonate.persistence.repository.inmemory import InMemoryDatabase
from tests.factories import add_donor, add_invite, event_types, plex_user

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


async def _mocks(app_container):
    db = await app_container.get(InMemoryDatabase)
    plex = await app_container.get(PlexClient)
    paypal = await app_container.get(PayPalClient)
    return db, plex, paypal


class TestExpire:
    """Tests for the expiry step."""

    @pytest.mark.asyncio
    async def test_expired_donor_is_revoked(self, app_container):
        """A cancelled donor past their expiry loses access and the expiry is cleared."""
        # Arrange
        db, plex, paypal = await _mocks(app_container)
        donor = add_donor(
            db,
            status="cancelled",
            access_expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
            plex_account_id="12345",
        )
        invite = add_invite(db, donor)
        plex.users = [plex_user(email="donor@example.com", account_id="12345")]
        paypal.subscriptions["I-TEST"] = SubscriptionSnapshot(
            subscription_id="I-TEST", status=DonorStatus.CANCELLED
        )
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.expired == 1
        assert report.failures == 0
        assert plex.calls_to("revoke_user") == [("12345", "donor@example.com")]
        stored = db.donors[donor.id]
        assert stored.access_expires_at is None
        assert db.invites[invite.id].revoked_at is not None
        assert "plex.access.revoked" in event_types(db)
        assert "donor.access.expiration.reached" in event_types(db)

    @pytest.mark.asyncio
    async def test_future_expiry_is_untouched(self, app_container):
        """Donors whose paid period has not ended keep access."""
        # Arrange
        db, plex, _ = await _mocks(app_container)
        add_donor(
            db,
            status="cancelled",
            access_expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
            payment_provider=Provider.STRIPE,
            subscription_id=None,
            stripe_subscription_id="sub_1",
        )
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.expired == 0
        assert plex.calls_to("revoke_user") == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_the_sweep(self, app_container, monkeypatch):
        """A failing donor is counted and the next donor is still processed."""
        # Arrange
        db, plex, _ = await _mocks(app_container)
        expired = datetime(2020, 1, 1, tzinfo=timezone.utc)
        failing = add_donor(
            db,
            subscription_id="I-1",
            status="cancelled",
            access_expires_at=expired,
            email="one@example.com",
        )
        add_donor(
            db,
            subscription_id="I-2",
            status="cancelled",
            access_expires_at=expired,
            email="two@example.com",
        )
        plex.users = [plex_user(email="two@example.com")]
        original = AccessController.ensure_revoked

        async def flaky(self, donor, *args, **kwargs):
            if donor.id == failing.id:
                raise RuntimeError("boom")
            return await original(self, donor, *args, **kwargs)

        monkeypatch.setattr(AccessController, "ensure_revoked", flaky)
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.expired == 1
        assert report.failures == 1
        assert plex.users == []


class TestTrialReminders:
    """Tests for the trial-ending reminder step."""

    @pytest.mark.asyncio
    async def test_ending_trial_is_reminded_once(self, app_container):
        """A trial ending within the window gets exactly one reminder."""
        # Arrange
        db, _, _ = await _mocks(app_container)
        mail = await app_container.get(MailClient)
        donor = add_donor(
            db,
            subscription_id=None,
            status="trial",
            access_expires_at=NOW + timedelta(hours=6),
        )
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))

        # Act
        first = await sweeper.tick(now=NOW)
        second = await sweeper.tick(now=NOW + timedelta(minutes=5))

        # Assert
        assert first.reminded == 1
        assert second.reminded == 0
        reminders = mail.sent_with("trial_ending")
        assert len(reminders) == 1
        assert reminders[0].to == "donor@example.com"
        assert "Sat, 01 Jun 2024 06:00:00 GMT" in reminders[0].text
        assert db.donors[donor.id].trial_reminder_sent_at is not None
        assert "donor.trial.reminder.sent" in event_types(db)

    @pytest.mark.asyncio
    async def test_distant_and_non_trial_donors_are_skipped(self, app_container):
        """Only trials ending inside the window are reminded."""
        # Arrange
        db, _, _ = await _mocks(app_container)
        mail = await app_container.get(MailClient)
        add_donor(
            db,
            subscription_id=None,
            status="trial",
            access_expires_at=NOW + timedelta(days=5),
        )
        add_donor(
            db,
            subscription_id=None,
            status="cancelled",
            access_expires_at=NOW + timedelta(hours=6),
        )
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.reminded == 0
        assert mail.sent_with("trial_ending") == []

    @pytest.mark.asyncio
    async def test_failed_delivery_is_retried(self, app_container):
        """An undelivered reminder is not marked and goes out on the next tick."""
        # Arrange
        db, _, _ = await _mocks(app_container)
        mail = await app_container.get(MailClient)
        donor = add_donor(
            db,
            subscription_id=None,
            status="trial",
            access_expires_at=NOW + timedelta(hours=6),
        )
        mail.failure = TransportError("SMTP unavailable", "smtp")
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))
        await sweeper.tick(now=NOW)
        assert db.donors[donor.id].trial_reminder_sent_at is None

        # Act
        mail.failure = None
        report = await sweeper.tick(now=NOW + timedelta(minutes=5))

        # Assert
        assert report.reminded == 1
        assert len(mail.sent_with("trial_ending")) == 1


class TestRefresh:
    """Tests for the PayPal refresh step."""

    @pytest.mark.asyncio
    async def test_pending_donor_is_refreshed(self, app_container):
        """Ambiguous PayPal donors pick up the provider's status."""
        # Arrange
        db, _, paypal = await _mocks(app_container)
        donor = add_donor(db, subscription_id="I-PEND", status="pending")
        paypal.subscriptions["I-PEND"] = SubscriptionSnapshot(
            subscription_id="I-PEND", status=DonorStatus.ACTIVE, raw_status="ACTIVE"
        )
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.refreshed == 1
        assert db.donors[donor.id].status == DonorStatus.ACTIVE
        assert paypal.calls_to("get_subscription") == [("I-PEND",)]

    @pytest.mark.asyncio
    async def test_stripe_donors_are_not_refreshed(self, app_container):
        """Only PayPal subscriptions are polled."""
        # Arrange
        db, _, paypal = await _mocks(app_container)
        add_donor(
            db,
            payment_provider=Provider.STRIPE,
            subscription_id=None,
            stripe_subscription_id="sub_1",
            status="pending",
        )
        sweeper = Sweeper(app_container, SweeperSettings(drift_repair=False))

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.refreshed == 0
        assert paypal.calls_to("get_subscription") == []


class TestDriftRepair:
    """Tests for forgetting Plex identities of departed users."""

    @pytest.mark.asyncio
    async def test_departed_user_identity_is_cleared(self, app_container):
        """A donor no longer on the server loses their stored Plex identity."""
        # Arrange
        db, plex, _ = await _mocks(app_container)
        donor = add_donor(
            db,
            subscription_id=None,
            plex_account_id="999",
            plex_email="gone@example.com",
        )
        plex.users = [plex_user(email="someone@example.com", account_id="1")]
        sweeper = Sweeper(app_container, SweeperSettings())

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.synced == 1
        stored = db.donors[donor.id]
        assert stored.plex_account_id is None
        assert stored.plex_email is None
        assert "plex.access.synced" in event_types(db)

    @pytest.mark.asyncio
    async def test_present_user_is_kept(self, app_container):
        """Donors still on the server keep their identity."""
        # Arrange
        db, plex, _ = await _mocks(app_container)
        donor = add_donor(db, subscription_id=None, plex_account_id="999")
        plex.users = [plex_user(account_id="999")]
        sweeper = Sweeper(app_container, SweeperSettings())

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.synced == 0
        assert db.donors[donor.id].plex_account_id == "999"

    @pytest.mark.asyncio
    async def test_plex_outage_skips_drift_repair(self, app_container):
        """An unreachable Plex server leaves identities alone."""
        # Arrange
        db, plex, _ = await _mocks(app_container)
        donor = add_donor(db, subscription_id=None, plex_account_id="999")
        plex.failures["list_current_shares"] = TransportError("down", "plex")
        sweeper = Sweeper(app_container, SweeperSettings())

        # Act
        report = await sweeper.tick(now=NOW)

        # Assert
        assert report.synced == 0
        assert db.donors[donor.id].plex_account_id == "999"


class TestLifecycle:
    """Tests for starting and stopping the sweeper."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, app_container):
        """The sweeper ticks once on start and stops promptly."""
        # Arrange
        sweeper = Sweeper(
            app_container,
            SweeperSettings(interval_seconds=60, shutdown_grace_seconds=1),
        )

        # Act
        sweeper.start()
        await asyncio.sleep(0.05)
        running = sweeper.running
        await sweeper.stop()

        # Assert
        assert running is True
        assert sweeper.running is False


class TestExpirationEvent:
    """Tests for the synthetic expiry event."""

    def test_uses_billing_subscription_for_lock(self):
        """The event contends for the same lock as the donor's webhooks."""
        db = InMemoryDatabase()
        donor = add_donor(
            db,
            payment_provider=Provider.STRIPE,
            subscription_id=None,
            stripe_subscription_id="sub_9",
        )

        event = expiration_event(donor, NOW)

        assert event.lock_key == ("stripe", "sub_9")
        assert event.observed_at == NOW

    def test_donor_without_subscription_gets_own_key(self):
        """Donors with no subscription still get a distinct lock key."""
        db = InMemoryDatabase()
        donor = add_donor(db, subscription_id=None, payment_provider=None)

        event = expiration_event(donor, NOW)

        assert event.lock_key == ("paypal", f"donor:{donor.id}")
