"""Mail adapter."""

from .client import MockMailClient, SmtpMailClient, build_message

__all__ = ["MockMailClient", "SmtpMailClient", "build_message"]
