"""Mock PayPal provider for testing."""

from dishka import Scope, provide

from plexdonate.adapter.paypal import MockPayPalClient
from plexdonate.domain.service import PayPalClient
from plexdonate.util.di.infrastructure.paypal import PayPalProvider


class MockPayPalProvider(PayPalProvider):
    """Mock PayPal provider.

    APP scope so tests can fetch the client, seed subscriptions and inspect
    recorded calls.
    """

    __is_mock__ = True

    @provide(scope=Scope.APP)
    def get_paypal_client(self) -> PayPalClient:
        """Provide mock PayPal client."""
        return MockPayPalClient()
