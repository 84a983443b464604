"""Unit tests for the Notifier email composer."""

from datetime import datetime, timedelta, timezone

from plexdonate.domain.model import Donor
from plexdonate.domain.service import Notifier, format_http_date, relay_flags
from plexdonate.domain.service.notifier import DONOR_CREATED, PLEX_REVOKED
from plexdonate.domain.value import DonorId


def _donor(**fields) -> Donor:
    values = {"email": "donor@example.com", "name": "Dana"}
    values.update(fields)
    return Donor(id=DonorId(7), **values)


class TestFormatHttpDate:
    """Tests for format_http_date."""

    def test_utc_instant(self):
        """Instants render in RFC 1123 form."""
        value = datetime(2030, 1, 1, tzinfo=timezone.utc)

        assert format_http_date(value) == "Tue, 01 Jan 2030 00:00:00 GMT"

    def test_offset_is_converted_to_gmt(self):
        """Non-UTC offsets are converted before rendering."""
        value = datetime(2030, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))

        assert format_http_date(value) == "Tue, 01 Jan 2030 00:00:00 GMT"

    def test_none(self):
        assert format_http_date(None) is None


class TestDonorEmails:
    """Tests for donor-facing templates."""

    def test_invite_contains_link_and_subscription(self):
        """The invite email carries the share link and subscription id."""
        notifier = Notifier()

        envelope = notifier.invite(
            to="donor@example.com",
            invite_url="https://app.plex.tv/invite/xyz",
            name="Dana",
            subscription_id="I-ABC",
        )

        assert envelope.template == "invite"
        assert "https://app.plex.tv/invite/xyz" in envelope.text
        assert "Subscription ID: I-ABC" in envelope.text
        assert "Hi Dana" in envelope.text

    def test_invite_without_url_links_plex(self):
        """Without a share link the donor is sent to Plex itself."""
        envelope = Notifier().invite(to="donor@example.com", invite_url=None)

        assert "https://app.plex.tv" in envelope.text
        assert "Hi there" in envelope.text

    def test_cancellation_with_paid_through(self):
        """A scheduled end date is spelled out."""
        envelope = Notifier().cancellation_scheduled(
            _donor(),
            to="donor@example.com",
            paid_through=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )

        assert envelope.template == "cancellation_scheduled"
        assert "Tue, 01 Jan 2030 00:00:00 GMT" in envelope.text

    def test_cancellation_already_ended(self):
        """Without a future date the email says access has ended."""
        envelope = Notifier().cancellation_scheduled(
            _donor(), to="donor@example.com", paid_through=None
        )

        assert "Your Plex access has now ended." in envelope.text

    def test_html_is_escaped(self):
        """Donor-supplied names are HTML escaped."""
        envelope = Notifier().subscription_thank_you(
            _donor(name="<script>"), to="donor@example.com"
        )

        assert "<script>" not in envelope.html
        assert "&lt;script&gt;" in envelope.html

    def test_payment_failed_mentions_attempt(self):
        envelope = Notifier().payment_failed(
            _donor(), to="donor@example.com", attempt_count=3
        )

        assert envelope.template == "payment_failed"
        assert "(attempt 3)" in envelope.text

    def test_trial_ending_names_the_end_date(self):
        envelope = Notifier(public_base_url="https://donate.example.com").trial_ending(
            _donor(),
            to="donor@example.com",
            access_expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )

        assert envelope.template == "trial_ending"
        assert "Tue, 01 Jan 2030 00:00:00 GMT" in envelope.text
        assert "https://donate.example.com/dashboard" in envelope.text

    def test_announcement_with_call_to_action(self):
        envelope = Notifier().announcement(
            to="donor@example.com",
            subject="Maintenance",
            body="First.\n\nSecond.",
            cta_label="Status",
            cta_url="https://status.example.com",
        )

        assert envelope.text.count("\n\n") >= 3
        assert "Status: https://status.example.com" in envelope.text

    def test_support_reply_quotes_request(self):
        envelope = Notifier(public_base_url="https://donate.example.com/").support_reply(
            to="donor@example.com", request_subject="Help", reply="Fixed."
        )

        assert envelope.subject == "Re: Help"
        assert "https://donate.example.com/dashboard" in envelope.text


class TestDashboardUrl:
    """Tests for resolve_dashboard_url."""

    def test_public_base_url_wins(self):
        notifier = Notifier(public_base_url="https://donate.example.com/")

        assert notifier.resolve_dashboard_url("https://other.example.com/x") == (
            "https://donate.example.com/dashboard"
        )

    def test_reference_origin(self):
        notifier = Notifier()

        assert notifier.resolve_dashboard_url("https://other.example.com/x?y=1") == (
            "https://other.example.com/dashboard"
        )

    def test_relative_fallback(self):
        assert Notifier().resolve_dashboard_url() == "/dashboard"


class TestAdminNotifications:
    """Tests for admin notification gating."""

    def test_enabled_toggle_with_recipient(self):
        """Enabled notifications go to the admin address."""
        notifier = Notifier(
            admin_recipient="admin@example.com", enabled_notifications=[DONOR_CREATED]
        )

        envelope = notifier.admin_donor_created(_donor(subscription_id="I-1"))

        assert envelope.to == "admin@example.com"
        assert envelope.template == "admin_notification"
        assert "Dana (donor@example.com)" in envelope.subject
        assert "Subscription ID: I-1" in envelope.text

    def test_disabled_toggle(self):
        """Disabled notifications are not composed."""
        notifier = Notifier(
            admin_recipient="admin@example.com", enabled_notifications=[DONOR_CREATED]
        )

        assert notifier.admin_plex_revoked(_donor()) is None

    def test_missing_recipient(self):
        """Without an admin address nothing is composed."""
        notifier = Notifier(enabled_notifications=[PLEX_REVOKED])

        assert notifier.admin_plex_revoked(_donor()) is None

    def test_empty_facts_are_dropped(self):
        notifier = Notifier(
            admin_recipient="admin@example.com", enabled_notifications=[PLEX_REVOKED]
        )

        envelope = notifier.admin_plex_revoked(_donor(), reason="access_expired")

        assert "Plex Account ID" not in envelope.text
        assert "Reason: access_expired" in envelope.text


class TestRelayFlags:
    """Tests for relay_flags."""

    def test_apple_relay_contact(self):
        donor = _donor(
            email="abc@privaterelay.appleid.com", plex_email="real@example.com"
        )

        assert relay_flags(donor) == {
            "donorEmailIsRelay": True,
            "plexEmailIsRelay": False,
            "emailsDiffer": True,
        }

    def test_plain_addresses(self):
        assert relay_flags(_donor()) == {
            "donorEmailIsRelay": False,
            "plexEmailIsRelay": False,
            "emailsDiffer": False,
        }
