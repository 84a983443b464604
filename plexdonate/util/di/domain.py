"""Domain layer DI providers."""

from dishka import Scope, provide

from plexdonate.config import Settings
from plexdonate.domain.repository import (
    DonorRepository,
    EventRepository,
    InviteRepository,
    PaymentRepository,
)
from plexdonate.domain.service import (
    AuditService,
    DonorService,
    InviteService,
    Notifier,
)
from plexdonate.util.di.base import ProviderBase


def admin_recipient(settings: Settings) -> str | None:
    """Admin address: notifications, then support inbox, then sender."""
    return (
        settings.notifications.admin_email
        or settings.smtp.support_notification_email
        or settings.smtp.from_address
        or None
    )


def enabled_notifications(settings: Settings) -> list[str]:
    toggles = settings.notifications.model_dump(exclude={"admin_email"})
    return [name for name, enabled in toggles.items() if enabled]


class ProdDomainProvider(ProviderBase):
    """Production domain services provider - concrete, no mocks needed.

    Domain services are REQUEST-scoped to align with repository/session
    lifecycle. The notifier holds no state and lives for the whole app.
    """

    scope = Scope.REQUEST

    @provide(scope=Scope.APP)
    def get_notifier(self, settings: Settings) -> Notifier:
        """Provide email composer."""
        return Notifier(
            public_base_url=settings.app.public_base_url,
            admin_recipient=admin_recipient(settings),
            enabled_notifications=enabled_notifications(settings),
        )

    @provide
    def get_donor_service(
        self,
        donor_repository: DonorRepository,
        invite_repository: InviteRepository,
        payment_repository: PaymentRepository,
    ) -> DonorService:
        """Provide donor domain service."""
        return DonorService(
            donor_repository=donor_repository,
            invite_repository=invite_repository,
            payment_repository=payment_repository,
        )

    @provide
    def get_invite_service(
        self, invite_repository: InviteRepository, settings: Settings
    ) -> InviteService:
        """Provide invite domain service."""
        return InviteService(
            invite_repository=invite_repository,
            stale_threshold_seconds=settings.invite_stale_seconds,
        )

    @provide
    def get_audit_service(self, event_repository: EventRepository) -> AuditService:
        """Provide audit trail service."""
        return AuditService(event_repository=event_repository)
