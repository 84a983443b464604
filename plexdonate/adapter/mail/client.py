"""SMTP mail client.

``smtplib`` is blocking, so every exchange runs in a worker thread.
"""

import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import logfire

from plexdonate.adapter.error import NotConfiguredError, TransportError
from plexdonate.domain.service.provider import MailClient
from plexdonate.domain.value import EmailEnvelope

PROVIDER = "smtp"
SENDER_NAME = "Plex Donate"


def build_message(envelope: EmailEnvelope, from_address: str) -> EmailMessage:
    """Build a multipart/alternative message with text and HTML bodies."""
    message = EmailMessage()
    message["From"] = formataddr((SENDER_NAME, from_address))
    message["To"] = envelope.to
    message["Subject"] = envelope.subject
    message["Message-ID"] = make_msgid(domain=from_address.rpartition("@")[2] or None)
    message["X-Plex-Donate-Template"] = envelope.template
    message.set_content(envelope.text)
    message.add_alternative(envelope.html, subtype="html")
    return message


class SmtpMailClient(MailClient):
    """Mail client speaking SMTP with STARTTLS or implicit TLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        secure: bool = False,
        user: str = "",
        password: str = "",
        from_address: str = "",
        timeout: float = 30.0,
    ) -> None:
        """Initialize SMTP client.

        Args:
            host: SMTP server host
            port: SMTP server port
            secure: Use implicit TLS instead of STARTTLS
            user: Login user; no login when empty
            password: Login password
            from_address: Sender address
            timeout: Socket timeout in seconds
        """
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.from_address = from_address
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_address)

    def _require_configuration(self) -> None:
        if not self.host:
            raise NotConfiguredError("SMTP host is not configured", PROVIDER)
        if not self.from_address:
            raise NotConfiguredError("SMTP from address is not configured", PROVIDER)

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.secure:
            connection: smtplib.SMTP = smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout, context=context
            )
        else:
            connection = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            connection.ehlo()
            if connection.has_extn("starttls"):
                connection.starttls(context=context)
                connection.ehlo()
        if self.user:
            connection.login(self.user, self.password)
        return connection

    def _deliver(self, message: EmailMessage) -> None:
        with self._connect() as connection:
            connection.send_message(message)

    def _check_connection(self) -> None:
        with self._connect() as connection:
            connection.noop()

    async def _run(self, action: str, func, *args) -> None:
        try:
            await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout + 5
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"{action} timed out", PROVIDER) from e
        except smtplib.SMTPAuthenticationError as e:
            raise TransportError(
                f"{action} failed: SMTP authentication rejected", PROVIDER, e.smtp_code
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"{action} failed: {e}", PROVIDER) from e

    async def send(self, envelope: EmailEnvelope) -> None:
        self._require_configuration()
        with logfire.span("mail_client.send", template=envelope.template):
            message = build_message(envelope, self.from_address)
            await self._run("Send email", self._deliver, message)
            logfire.info("Email sent", template=envelope.template)

    async def verify_connection(self) -> None:
        self._require_configuration()
        with logfire.span("mail_client.verify_connection", host=self.host):
            await self._run("Verify SMTP connection", self._check_connection)


class MockMailClient(MailClient):
    """Mock mail client for testing.

    Sent envelopes are kept in ``sent``. Set ``failure`` to make every send
    raise it.
    """

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.sent: list[EmailEnvelope] = []
        self.failure: Exception | None = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    def sent_with(self, template: str) -> list[EmailEnvelope]:
        return [envelope for envelope in self.sent if envelope.template == template]

    async def send(self, envelope: EmailEnvelope) -> None:
        if not self.configured:
            raise NotConfiguredError("SMTP host is not configured", PROVIDER)
        if self.failure is not None:
            raise self.failure
        self.sent.append(envelope)

    async def verify_connection(self) -> None:
        if not self.configured:
            raise NotConfiguredError("SMTP host is not configured", PROVIDER)
