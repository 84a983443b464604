"""Stripe infrastructure providers."""

from dishka import Scope, provide

from plexdonate.adapter.stripe import RealStripeClient
from plexdonate.config import Settings
from plexdonate.domain.service import StripeClient
from plexdonate.util.di.base import ProviderBase


class StripeProvider(ProviderBase):
    """Stripe component base."""

    __mock_component__ = "stripe"


class ProdStripeProvider(StripeProvider):
    """Production Stripe provider."""

    __is_mock__ = False

    @provide(scope=Scope.APP)
    def get_stripe_client(self, settings: Settings) -> StripeClient:
        """Provide Stripe SDK client."""
        stripe = settings.stripe
        return RealStripeClient(
            secret_key=stripe.secret_key,
            webhook_secret=stripe.webhook_secret,
            price_id=stripe.price_id,
            success_url=stripe.success_url,
            cancel_url=stripe.cancel_url,
            timeout=stripe.timeout_seconds,
        )
