"""Infrastructure providers."""

# Import bases
from .mail import MailProvider
from .paypal import PayPalProvider
from .persistence import PersistenceProvider
from .plex import PlexProvider
from .stripe import StripeProvider

# Import implementations (needed for __subclasses__())
from .mail import ProdMailProvider  # noqa: F401
from .paypal import ProdPayPalProvider  # noqa: F401
from .persistence import ProdPersistenceProvider  # noqa: F401
from .plex import ProdPlexProvider  # noqa: F401
from .stripe import ProdStripeProvider  # noqa: F401

__all__ = [
    "MailProvider",
    "PayPalProvider",
    "PersistenceProvider",
    "PlexProvider",
    "StripeProvider",
    "ProdMailProvider",
    "ProdPayPalProvider",
    "ProdPersistenceProvider",
    "ProdPlexProvider",
    "ProdStripeProvider",
]
