"""Webhook ingestion use cases."""

from .common import WebhookResponse
from .paypal import PayPalWebhookRequest, PayPalWebhookUseCase
from .stripe import StripeWebhookRequest, StripeWebhookUseCase

__all__ = [
    "PayPalWebhookRequest",
    "PayPalWebhookUseCase",
    "StripeWebhookRequest",
    "StripeWebhookUseCase",
    "WebhookResponse",
]
