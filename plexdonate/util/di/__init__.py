"""Dependency injection module."""

from typing import Type

from plexdonate.util.di.application import ProdApplicationProvider
from plexdonate.util.di.base import Component, ProviderBase
from plexdonate.util.di.core import ProdConfigProvider
from plexdonate.util.di.domain import ProdDomainProvider
from plexdonate.util.di.infrastructure import (
    MailProvider,
    PayPalProvider,
    PersistenceProvider,
    PlexProvider,
    ProdMailProvider,
    ProdPayPalProvider,
    ProdPersistenceProvider,
    ProdPlexProvider,
    ProdStripeProvider,
    StripeProvider,
)
from plexdonate.util.error import DependencyInjectionError

# Single list - all providers treated uniformly
PROVIDERS: list[Type[ProviderBase]] = [
    # Core providers (not mockable)
    ProdConfigProvider,
    ProdDomainProvider,
    ProdApplicationProvider,
    # Infrastructure components (mockable)
    PersistenceProvider,
    PayPalProvider,
    StripeProvider,
    PlexProvider,
    MailProvider,
]


def get_provider(
    base: Type[ProviderBase], use_mock: bool = False
) -> Type[ProviderBase]:
    """Get appropriate provider class.

    Automatically determines if provider is mockable by checking for subclasses.

    - No subclasses: Concrete provider, use directly
    - Has subclasses: Mockable component, select by __is_mock__ flag

    Args:
        base: Provider base class
        use_mock: Whether to use mock implementation

    Returns:
        Provider class (not instantiated)

    Raises:
        DependencyInjectionError: If requested implementation not found
    """
    subclasses = base.__subclasses__()

    if not subclasses:
        return base

    impl = next(
        (c for c in subclasses if getattr(c, "__is_mock__", False) == use_mock),
        None,
    )

    if not impl:
        kind = "mock" if use_mock else "production"
        component_name = getattr(base, "__mock_component__", None) or base.__name__
        raise DependencyInjectionError(component_name, kind)

    return impl


__all__ = [
    "Component",
    "ProviderBase",
    "PROVIDERS",
    "get_provider",
    # Core providers
    "ProdConfigProvider",
    "ProdDomainProvider",
    "ProdApplicationProvider",
    # Infrastructure base classes
    "MailProvider",
    "PayPalProvider",
    "PersistenceProvider",
    "PlexProvider",
    "StripeProvider",
    # Infrastructure implementations
    "ProdMailProvider",
    "ProdPayPalProvider",
    "ProdPersistenceProvider",
    "ProdPlexProvider",
    "ProdStripeProvider",
]
