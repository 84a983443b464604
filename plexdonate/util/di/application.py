"""Application layer DI providers."""

from dishka import Scope, provide

from plexdonate.application.service import (
    AccessController,
    Reconciler,
    SubscriptionLocks,
)
from plexdonate.application.usecase.webhook import (
    PayPalWebhookUseCase,
    StripeWebhookUseCase,
)
from plexdonate.config import ReconcilerSettings
from plexdonate.domain.service import (
    AuditService,
    DonorService,
    InviteService,
    MailClient,
    Notifier,
    PayPalClient,
    PlexClient,
    StripeClient,
)
from plexdonate.util.di.base import ProviderBase


class ProdApplicationProvider(ProviderBase):
    """Production application services and use cases provider."""

    @provide(scope=Scope.APP)
    def get_subscription_locks(self, settings: ReconcilerSettings) -> SubscriptionLocks:
        """Provide the process-wide lock registry.

        Webhook handlers and the sweeper must share one instance.
        """
        return SubscriptionLocks(timeout_seconds=settings.lock_timeout_seconds)

    @provide(scope=Scope.REQUEST)
    def get_access_controller(
        self,
        plex_client: PlexClient,
        mail_client: MailClient,
        notifier: Notifier,
        donor_service: DonorService,
        invite_service: InviteService,
        audit_service: AuditService,
    ) -> AccessController:
        """Provide Plex access controller."""
        return AccessController(
            plex_client=plex_client,
            mail_client=mail_client,
            notifier=notifier,
            donor_service=donor_service,
            invite_service=invite_service,
            audit_service=audit_service,
        )

    @provide(scope=Scope.REQUEST)
    def get_reconciler(
        self,
        donor_service: DonorService,
        invite_service: InviteService,
        audit_service: AuditService,
        access_controller: AccessController,
        notifier: Notifier,
        mail_client: MailClient,
        paypal_client: PayPalClient,
        stripe_client: StripeClient,
        locks: SubscriptionLocks,
    ) -> Reconciler:
        """Provide event reconciler."""
        return Reconciler(
            donor_service=donor_service,
            invite_service=invite_service,
            audit_service=audit_service,
            access_controller=access_controller,
            notifier=notifier,
            mail_client=mail_client,
            paypal_client=paypal_client,
            stripe_client=stripe_client,
            locks=locks,
        )

    # Webhook use cases
    @provide(scope=Scope.REQUEST)
    def get_paypal_webhook_use_case(
        self,
        paypal_client: PayPalClient,
        reconciler: Reconciler,
        audit_service: AuditService,
    ) -> PayPalWebhookUseCase:
        """Provide PayPal webhook use case."""
        return PayPalWebhookUseCase(
            paypal_client=paypal_client,
            reconciler=reconciler,
            audit_service=audit_service,
        )

    @provide(scope=Scope.REQUEST)
    def get_stripe_webhook_use_case(
        self,
        stripe_client: StripeClient,
        reconciler: Reconciler,
        audit_service: AuditService,
    ) -> StripeWebhookUseCase:
        """Provide Stripe webhook use case."""
        return StripeWebhookUseCase(
            stripe_client=stripe_client,
            reconciler=reconciler,
            audit_service=audit_service,
        )
