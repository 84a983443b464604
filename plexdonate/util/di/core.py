"""Core DI providers (non-mockable)."""

from dishka import Scope, provide

from plexdonate.config import (
    NotificationSettings,
    ReconcilerSettings,
    Settings,
    SweeperSettings,
)
from plexdonate.util.di.base import ProviderBase


class ProdConfigProvider(ProviderBase):
    """Production config provider.

    Settings are loaded once per process from environment variables and
    ``.env``; every component receives them from here.
    """

    @provide(scope=Scope.APP)
    def provide_settings(self) -> Settings:
        """Provide application settings from environment."""
        return Settings()

    @provide(scope=Scope.APP)
    def provide_reconciler_settings(self, settings: Settings) -> ReconcilerSettings:
        return settings.reconciler

    @provide(scope=Scope.APP)
    def provide_sweeper_settings(self, settings: Settings) -> SweeperSettings:
        return settings.sweeper

    @provide(scope=Scope.APP)
    def provide_notification_settings(self, settings: Settings) -> NotificationSettings:
        return settings.notifications
