"""Provider client interfaces.

The reconciler and sweeper talk to PayPal, Stripe and Plex only through
these ports. Implementations (real and mock) live in ``plexdonate.adapter``.
"""

from collections.abc import Mapping
from typing import Any

from plexdonate.domain.value import (
    CancelOutcome,
    CheckoutSession,
    DonorStatus,
    EmailEnvelope,
    PlanResult,
    PlexConnectionInfo,
    PlexInviteResult,
    PlexShare,
    Provider,
    RevokeOutcome,
    Subscriber,
    SubscriptionCreation,
    SubscriptionSnapshot,
    WebhookVerification,
)


class PaymentProviderClient:
    """Operations shared by every payment provider."""

    provider: Provider

    @property
    def is_configured(self) -> bool:
        raise NotImplementedError

    async def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Fetch the provider's current view of a subscription.

        Args:
            subscription_id: Provider subscription id

        Returns:
            Normalized subscription snapshot

        Raises:
            NotConfiguredError: If credentials are missing
            ProviderNotFoundError: If the subscription does not exist
            TransportError: On network failure, timeout or 5xx
        """
        raise NotImplementedError


class PayPalClient(PaymentProviderClient):
    """PayPal REST facade."""

    provider = Provider.PAYPAL

    async def verify_connection(self) -> None:
        """Obtain an access token to prove the credentials work."""
        raise NotImplementedError

    async def verify_webhook_signature(
        self, headers: Mapping[str, str], raw_body: bytes
    ) -> WebhookVerification:
        """Ask PayPal whether a webhook delivery is authentic.

        Args:
            headers: Request headers (case-insensitive keys)
            raw_body: Byte-exact request body

        Returns:
            Verification outcome; never raises for a rejected signature
        """
        raise NotImplementedError

    async def create_subscription(
        self,
        plan_id: str,
        subscriber: Subscriber,
        return_url: str | None = None,
        cancel_url: str | None = None,
    ) -> SubscriptionCreation:
        raise NotImplementedError

    async def ensure_plan(
        self, price: float, currency: str, product_id: str | None = None
    ) -> PlanResult:
        raise NotImplementedError

    def checkout_url(self, plan_id: str) -> str:
        raise NotImplementedError


class StripeClient(PaymentProviderClient):
    """Stripe facade."""

    provider = Provider.STRIPE

    def construct_webhook_event(
        self, raw_body: bytes, signature: str | None
    ) -> dict[str, Any]:
        """Verify the ``stripe-signature`` HMAC and parse the event.

        Raises:
            WebhookVerificationError: On a missing or invalid signature
        """
        raise NotImplementedError

    async def create_checkout_session(
        self,
        customer_email: str | None = None,
        price_id: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> CheckoutSession:
        raise NotImplementedError

    async def cancel_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        raise NotImplementedError

    def map_status(self, raw_status: str | None) -> DonorStatus | None:
        raise NotImplementedError


class PlexClient:
    """Plex server and plex.tv facade."""

    @property
    def is_configured(self) -> bool:
        raise NotImplementedError

    @property
    def library_section_ids(self) -> list[str]:
        raise NotImplementedError

    async def verify_connection(self) -> PlexConnectionInfo:
        raise NotImplementedError

    async def create_invite(
        self,
        email: str,
        friendly_name: str | None = None,
        section_ids: list[str] | None = None,
    ) -> PlexInviteResult:
        """Share the configured libraries with an email address.

        Args:
            email: Plex account email to invite
            friendly_name: Optional display name on the share
            section_ids: Override of the configured library sections

        Returns:
            Invite details as reported by Plex

        Raises:
            NotConfiguredError: Missing base URL, token or sections
            RejectedByProviderError: Plex refused the token
            TransportError: Network failure, timeout or 5xx
            PlexServerError: Server discovery failed
        """
        raise NotImplementedError

    async def cancel_invite(self, plex_invite_id: str) -> CancelOutcome:
        raise NotImplementedError

    async def revoke_user(
        self, plex_account_id: str | None = None, email: str | None = None
    ) -> RevokeOutcome:
        """Remove a user's access, resolving by account id first, then email."""
        raise NotImplementedError

    async def list_users(self) -> list[PlexShare]:
        """Users of the server from the discovered user-list endpoint."""
        raise NotImplementedError

    async def list_current_shares(self) -> list[PlexShare]:
        """Shares and pending invitations on the server."""
        raise NotImplementedError


class MailClient:
    """Outbound email transport."""

    @property
    def is_configured(self) -> bool:
        raise NotImplementedError

    async def send(self, envelope: EmailEnvelope) -> None:
        """Send a composed email.

        Raises:
            NotConfiguredError: Missing host or sender address
            TransportError: SMTP failure or timeout
        """
        raise NotImplementedError

    async def verify_connection(self) -> None:
        raise NotImplementedError
