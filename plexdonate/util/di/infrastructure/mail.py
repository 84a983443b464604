"""Mail infrastructure providers."""

from dishka import Scope, provide

from plexdonate.adapter.mail import SmtpMailClient
from plexdonate.config import Settings
from plexdonate.domain.service import MailClient
from plexdonate.util.di.base import ProviderBase


class MailProvider(ProviderBase):
    """Mail component base."""

    __mock_component__ = "mail"


class ProdMailProvider(MailProvider):
    """Production SMTP provider."""

    __is_mock__ = False

    @provide(scope=Scope.APP)
    def get_mail_client(self, settings: Settings) -> MailClient:
        """Provide SMTP mail client."""
        smtp = settings.smtp
        return SmtpMailClient(
            host=smtp.host,
            port=smtp.port,
            secure=smtp.secure,
            user=smtp.user,
            password=smtp.password,
            from_address=smtp.from_address,
            timeout=smtp.timeout_seconds,
        )
