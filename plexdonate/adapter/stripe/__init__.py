"""Stripe adapter."""

from .client import MockStripeClient, RealStripeClient
from .events import translate_stripe_event
from .parsing import from_minor_units, map_stripe_status

__all__ = [
    "MockStripeClient",
    "RealStripeClient",
    "from_minor_units",
    "map_stripe_status",
    "translate_stripe_event",
]
