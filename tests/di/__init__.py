"""Mock providers for testing."""

from .mail import MockMailProvider
from .paypal import MockPayPalProvider
from .persistence import MockPersistenceProvider
from .plex import MockPlexProvider
from .stripe import MockStripeProvider
from .container import build_test_container

__all__ = [
    "MockMailProvider",
    "MockPayPalProvider",
    "MockPersistenceProvider",
    "MockPlexProvider",
    "MockStripeProvider",
    "build_test_container",
]
