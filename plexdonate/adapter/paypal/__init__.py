"""PayPal adapter."""

from .client import MockPayPalClient, RealPayPalClient
from .events import translate_paypal_event
from .parsing import build_subscriber_details, map_paypal_status

__all__ = [
    "MockPayPalClient",
    "RealPayPalClient",
    "build_subscriber_details",
    "map_paypal_status",
    "translate_paypal_event",
]
