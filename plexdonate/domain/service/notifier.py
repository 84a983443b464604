"""Email composition.

The notifier is a pure function of ``(transition, donor, config)``: it builds
``EmailEnvelope`` values and never talks to SMTP. Sending is the caller's
job, so composing an email can never fail a state transition.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
from email.utils import format_datetime
from html import escape
from urllib.parse import urlsplit

import logfire

from plexdonate.domain.model.donor import Donor
from plexdonate.domain.value import (
    EmailEnvelope,
    is_relay_email,
    normalize_email,
)

from .base import Service

DEFAULT_PLEX_URL = "https://app.plex.tv"
SIGNATURE = "— Plex Donate"

# Admin notification toggles
DONOR_CREATED = "on_donor_created"
SUBSCRIPTION_STARTED = "on_subscription_started"
PLEX_REVOKED = "on_plex_revoked"
TRIAL_STARTED = "on_trial_started"

_BUTTON_STYLE = (
    "display:inline-block;background:#6366f1;color:#fff;padding:12px 20px;"
    "border-radius:6px;text-decoration:none;font-weight:600;"
)


def format_http_date(value: datetime | None) -> str | None:
    """Render an instant as an RFC 1123 date, e.g. ``Tue, 01 Jan 2030 00:00:00 GMT``."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def donor_label(donor: Donor | None) -> str:
    if donor is None:
        return "Unknown donor"
    if donor.name and donor.email:
        return f"{donor.name} ({donor.email})"
    return donor.name or donor.email or f"Donor #{donor.id}"


def relay_flags(donor: Donor) -> dict[str, bool]:
    """Advisory flags for event payloads when Apple relay addresses are involved."""
    contact = normalize_email(donor.email)
    plex = normalize_email(donor.plex_email)
    return {
        "donorEmailIsRelay": is_relay_email(contact),
        "plexEmailIsRelay": is_relay_email(plex),
        "emailsDiffer": bool(contact and plex and contact != plex),
    }


class Notifier(Service):
    """Composes user-facing and admin emails."""

    def __init__(
        self,
        public_base_url: str = "",
        admin_recipient: str | None = None,
        enabled_notifications: Iterable[str] = (),
    ) -> None:
        """Initialize notifier.

        Args:
            public_base_url: Base URL for dashboard links
            admin_recipient: Address for admin notifications, None to skip them
            enabled_notifications: Admin notification toggles that are on
        """
        self.public_base_url = (public_base_url or "").rstrip("/")
        self.admin_recipient = admin_recipient or None
        self.enabled_notifications = frozenset(enabled_notifications)

    def resolve_dashboard_url(self, reference_url: str | None = None) -> str:
        """Dashboard link from the public base URL or a reference URL's origin."""
        if self.public_base_url:
            return f"{self.public_base_url}/dashboard"
        if reference_url:
            parts = urlsplit(reference_url)
            if parts.scheme and parts.netloc:
                return f"{parts.scheme}://{parts.netloc}/dashboard"
        return "/dashboard"

    def invite(
        self,
        to: str,
        invite_url: str | None,
        name: str | None = None,
        subscription_id: str | None = None,
    ) -> EmailEnvelope:
        url = invite_url or DEFAULT_PLEX_URL
        greeting = name or "there"
        subscription_line = (
            f"\n\nSubscription ID: {subscription_id}" if subscription_id else ""
        )
        text = (
            f"Hi {greeting},\n\nThank you for supporting our Plex server!\n\n"
            f"Use your personal share link to accept the Plex invite: {url}"
            f"{subscription_line}\n\n"
            "If you did not request this invite or need help, reply to this email."
            f"\n\n{SIGNATURE}"
        )
        html = (
            f"<p>Hi {escape(greeting)},</p>"
            "<p>Thank you for supporting our Plex server! "
            "Use the button below to accept your Plex invite.</p>"
            f'<p style="text-align:center;margin:24px 0;">'
            f'<a href="{escape(url, quote=True)}" style="{_BUTTON_STYLE}">Accept Invite</a></p>'
            + (
                f'<p style="font-size:14px;color:#4b5563;">Subscription ID: '
                f"{escape(subscription_id)}</p>"
                if subscription_id
                else ""
            )
            + f"<p>If you need help, just reply to this email.</p><p>{SIGNATURE}</p>"
        )
        return EmailEnvelope(
            to=to,
            subject="Your Plex access invite",
            text=text,
            html=html,
            template="invite",
        )

    def subscription_thank_you(
        self, donor: Donor, to: str, reference_url: str | None = None
    ) -> EmailEnvelope:
        greeting = donor.name or "there"
        dashboard = self.resolve_dashboard_url(reference_url)
        text = (
            f"Hi {greeting},\n\nThank you for your subscription! Your support keeps "
            "our Plex server running.\n\n"
            f"You can manage your access from your dashboard: {dashboard}\n\n"
            f"If you have any questions, just reply to this email.\n\n{SIGNATURE}"
        )
        html = (
            f"<p>Hi {escape(greeting)},</p>"
            "<p>Thank you for your subscription! Your support keeps our Plex server running.</p>"
            f'<p style="text-align:center;margin:24px 0;">'
            f'<a href="{escape(dashboard, quote=True)}" style="{_BUTTON_STYLE}">Open Dashboard</a></p>'
            f"<p>If you have any questions, just reply to this email.</p><p>{SIGNATURE}</p>"
        )
        return EmailEnvelope(
            to=to,
            subject="Thank you for supporting our Plex server",
            text=text,
            html=html,
            template="subscription_thank_you",
        )

    def cancellation_scheduled(
        self,
        donor: Donor,
        to: str,
        paid_through: datetime | None,
        subscription_id: str | None = None,
    ) -> EmailEnvelope:
        greeting = donor.name or "there"
        display_date = format_http_date(paid_through)
        if display_date:
            access_text = f"Your Plex access will remain active until {display_date}."
            access_html = (
                f"Your Plex access will remain active until <strong>{display_date}</strong>."
            )
        else:
            access_text = access_html = "Your Plex access has now ended."
        comeback = (
            "If you'd like to come back, you can restart your support anytime by "
            "visiting the donation portal and starting a new subscription with the "
            "same email address."
        )
        subscription_line = (
            f"\n\nSubscription ID: {subscription_id}" if subscription_id else ""
        )
        text = (
            f"Hi {greeting},\n\nThank you for supporting our Plex server. {access_text}"
            f"\n\n{comeback}{subscription_line}\n\n"
            f"If you have any questions, just reply to this email.\n\n{SIGNATURE}"
        )
        html = (
            f"<p>Hi {escape(greeting)},</p>"
            "<p>Thank you for supporting our Plex server.</p>"
            f"<p>{access_html}</p><p>{escape(comeback)}</p>"
            + (
                f'<p style="font-size:14px;color:#4b5563;">Subscription ID: '
                f"{escape(subscription_id)}</p>"
                if subscription_id
                else ""
            )
            + f"<p>If you have any questions, just reply to this email.</p><p>{SIGNATURE}</p>"
        )
        return EmailEnvelope(
            to=to,
            subject="Your Plex access is scheduled to end",
            text=text,
            html=html,
            template="cancellation_scheduled",
        )

    def payment_failed(
        self,
        donor: Donor,
        to: str,
        attempt_count: int | None = None,
        reference_url: str | None = None,
    ) -> EmailEnvelope:
        greeting = donor.name or "there"
        dashboard = self.resolve_dashboard_url(reference_url)
        attempt_text = (
            f" (attempt {attempt_count})" if attempt_count and attempt_count > 0 else ""
        )
        text = (
            f"Hi {greeting},\n\nWe couldn't process your latest subscription "
            f"payment{attempt_text}. Please update your payment details with your "
            "payment provider to keep your Plex access.\n\n"
            f"Dashboard: {dashboard}\n\n"
            f"If you have any questions, just reply to this email.\n\n{SIGNATURE}"
        )
        html = (
            f"<p>Hi {escape(greeting)},</p>"
            f"<p>We couldn't process your latest subscription payment{escape(attempt_text)}. "
            "Please update your payment details with your payment provider to keep "
            "your Plex access.</p>"
            f'<p style="text-align:center;margin:24px 0;">'
            f'<a href="{escape(dashboard, quote=True)}" style="{_BUTTON_STYLE}">Open Dashboard</a></p>'
            f"<p>If you have any questions, just reply to this email.</p><p>{SIGNATURE}</p>"
        )
        return EmailEnvelope(
            to=to,
            subject="We couldn't process your Plex subscription payment",
            text=text,
            html=html,
            template="payment_failed",
        )

    def trial_ending(
        self,
        donor: Donor,
        to: str,
        access_expires_at: datetime | None,
        reference_url: str | None = None,
    ) -> EmailEnvelope:
        greeting = donor.name or "there"
        dashboard = self.resolve_dashboard_url(reference_url)
        display_date = format_http_date(access_expires_at) or "soon"
        text = (
            f"Hi {greeting},\n\nYour Plex trial ends on {display_date}. "
            "Start a subscription before then to keep your access.\n\n"
            f"Dashboard: {dashboard}\n\n"
            f"If you have any questions, just reply to this email.\n\n{SIGNATURE}"
        )
        html = (
            f"<p>Hi {escape(greeting)},</p>"
            f"<p>Your Plex trial ends on <strong>{escape(display_date)}</strong>. "
            "Start a subscription before then to keep your access.</p>"
            f'<p style="text-align:center;margin:24px 0;">'
            f'<a href="{escape(dashboard, quote=True)}" style="{_BUTTON_STYLE}">Open Dashboard</a></p>'
            f"<p>If you have any questions, just reply to this email.</p><p>{SIGNATURE}</p>"
        )
        return EmailEnvelope(
            to=to,
            subject="Your Plex trial is ending soon",
            text=text,
            html=html,
            template="trial_ending",
        )

    def announcement(
        self,
        to: str,
        subject: str,
        body: str,
        name: str | None = None,
        cta_label: str | None = None,
        cta_url: str | None = None,
    ) -> EmailEnvelope:
        greeting = name or "there"
        paragraphs = [part.strip() for part in body.split("\n\n") if part.strip()]
        cta_text = f"\n\n{cta_label}: {cta_url}" if cta_label and cta_url else ""
        text = f"Hi {greeting},\n\n" + "\n\n".join(paragraphs) + cta_text + f"\n\n{SIGNATURE}"
        html = f"<p>Hi {escape(greeting)},</p>" + "".join(
            f"<p>{escape(part)}</p>" for part in paragraphs
        )
        if cta_label and cta_url:
            html += (
                f'<p style="text-align:center;margin:24px 0;">'
                f'<a href="{escape(cta_url, quote=True)}" style="{_BUTTON_STYLE}">'
                f"{escape(cta_label)}</a></p>"
            )
        html += f"<p>{SIGNATURE}</p>"
        return EmailEnvelope(
            to=to, subject=subject, text=text, html=html, template="announcement"
        )

    def support_reply(
        self,
        to: str,
        request_subject: str,
        reply: str,
        name: str | None = None,
        reference_url: str | None = None,
    ) -> EmailEnvelope:
        greeting = name or "there"
        dashboard = self.resolve_dashboard_url(reference_url)
        text = (
            f"Hi {greeting},\n\nThere is a new reply to your support request "
            f'"{request_subject}":\n\n{reply}\n\n'
            f"View the conversation: {dashboard}\n\n{SIGNATURE}"
        )
        html = (
            f"<p>Hi {escape(greeting)},</p>"
            f"<p>There is a new reply to your support request "
            f"<strong>{escape(request_subject)}</strong>:</p>"
            f'<blockquote style="border-left:3px solid #6366f1;padding-left:12px;">'
            f"{escape(reply)}</blockquote>"
            f'<p><a href="{escape(dashboard, quote=True)}">View the conversation</a></p>'
            f"<p>{SIGNATURE}</p>"
        )
        return EmailEnvelope(
            to=to,
            subject=f"Re: {request_subject}",
            text=text,
            html=html,
            template="support_reply",
        )

    def admin_notification(
        self,
        toggle: str,
        subject: str,
        heading: str,
        intro: str,
        facts: list[tuple[str, object]],
    ) -> EmailEnvelope | None:
        """Compose an admin notification.

        Args:
            toggle: Notification toggle gating this email
            subject: Email subject
            heading: Heading line
            intro: One-sentence summary
            facts: Label/value pairs; empty values are dropped

        Returns:
            The envelope, or None if the toggle is off or no recipient is set
        """
        if toggle not in self.enabled_notifications:
            return None
        if not self.admin_recipient:
            logfire.warn("Admin notification skipped: no recipient", toggle=toggle)
            return None

        rows = [(label, str(value)) for label, value in facts if value not in (None, "")]
        dashboard = self.resolve_dashboard_url()
        text = (
            f"{heading}\n\n{intro}\n\n"
            + "\n".join(f"{label}: {value}" for label, value in rows)
            + f"\n\nDashboard: {dashboard}"
        )
        html = (
            f"<h2>{escape(heading)}</h2><p>{escape(intro)}</p>"
            '<table style="border-collapse:collapse;">'
            + "".join(
                f'<tr><td style="padding:4px 12px 4px 0;color:#4b5563;">{escape(label)}</td>'
                f"<td>{escape(value)}</td></tr>"
                for label, value in rows
            )
            + f'</table><p><a href="{escape(dashboard, quote=True)}">Open dashboard</a></p>'
        )
        return EmailEnvelope(
            to=self.admin_recipient,
            subject=subject,
            text=text,
            html=html,
            template="admin_notification",
        )

    def admin_donor_created(
        self, donor: Donor, source: str | None = None
    ) -> EmailEnvelope | None:
        label = donor_label(donor)
        return self.admin_notification(
            DONOR_CREATED,
            subject=f"[Admin] New donor account: {label}",
            heading="New donor account created",
            intro=f"{label} was added to Plex Donate.",
            facts=[
                ("Donor", label),
                ("Email", donor.email),
                ("Source", source or "Webhook"),
                ("Subscription ID", donor.billing_subscription_id),
            ],
        )

    def admin_subscription_started(
        self,
        donor: Donor,
        amount: object = None,
        currency: str | None = None,
        paid_at: datetime | None = None,
        source: str | None = None,
    ) -> EmailEnvelope | None:
        label = donor_label(donor)
        payment = f"{amount} {currency or ''}".strip() if amount else None
        return self.admin_notification(
            SUBSCRIPTION_STARTED,
            subject=f"[Admin] Subscription started: {label}",
            heading="Subscription activated",
            intro=f"{label} is now an active subscriber.",
            facts=[
                ("Donor", label),
                ("Email", donor.email),
                ("Subscription ID", donor.billing_subscription_id),
                ("Payment", payment),
                ("Payment at", format_http_date(paid_at)),
                ("Source", source),
            ],
        )

    def admin_plex_revoked(
        self, donor: Donor, reason: str | None = None, context: str | None = None
    ) -> EmailEnvelope | None:
        label = donor_label(donor)
        facts: list[tuple[str, object]] = [("Donor", label)]
        if donor.email and donor.email not in label:
            facts.append(("Email", donor.email))
        facts.extend(
            [
                ("Reason", reason or "revoked"),
                ("Context", context or "system"),
                ("Plex Account ID", donor.plex_account_id),
            ]
        )
        return self.admin_notification(
            PLEX_REVOKED,
            subject=f"[Admin] Plex access revoked: {label}",
            heading="Plex access revoked",
            intro=f"{label} no longer has Plex access.",
            facts=facts,
        )

    def admin_trial_started(
        self, donor: Donor, access_expires_at: datetime | None = None
    ) -> EmailEnvelope | None:
        label = donor_label(donor)
        return self.admin_notification(
            TRIAL_STARTED,
            subject=f"[Admin] Trial started: {label}",
            heading="Trial access started",
            intro=f"{label} started a Plex trial.",
            facts=[
                ("Donor", label),
                ("Email", donor.email),
                ("Trial ends", format_http_date(access_expires_at)),
            ],
        )
