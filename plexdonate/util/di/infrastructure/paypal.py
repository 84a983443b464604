"""PayPal infrastructure providers."""

from dishka import Scope, provide

from plexdonate.adapter.paypal import RealPayPalClient
from plexdonate.config import Settings
from plexdonate.domain.service import PayPalClient
from plexdonate.util.di.base import ProviderBase


class PayPalProvider(ProviderBase):
    """PayPal component base."""

    __mock_component__ = "paypal"


class ProdPayPalProvider(PayPalProvider):
    """Production PayPal provider."""

    __is_mock__ = False

    @provide(scope=Scope.APP)
    def get_paypal_client(self, settings: Settings) -> PayPalClient:
        """Provide PayPal REST client."""
        paypal = settings.paypal
        return RealPayPalClient(
            client_id=paypal.client_id,
            client_secret=paypal.client_secret,
            webhook_id=paypal.webhook_id,
            api_base=paypal.api_base,
            plan_id=paypal.plan_id,
            product_id=paypal.product_id,
            timeout=paypal.timeout_seconds,
        )
