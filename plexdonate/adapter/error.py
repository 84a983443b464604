"""Adapter layer errors.

Provider clients translate transport and HTTP failures into this hierarchy
so callers can decide per effect whether to retry, skip, or give up.
"""


class AdapterError(Exception):
    """Base adapter error."""

    pass


class ProviderError(AdapterError):
    """External provider error."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class NotConfiguredError(ProviderError):
    """Missing credentials or required configuration (no library sections, no sender)."""

    pass


class TransportError(ProviderError):
    """Network failure, timeout, or 5xx from the provider. Retryable."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, provider)
        self.status_code = status_code


class RejectedByProviderError(ProviderError):
    """Provider refused the credentials (401/403)."""

    def __init__(
        self, message: str, provider: str | None = None, status_code: int = 401
    ) -> None:
        super().__init__(message, provider)
        self.status_code = status_code


class ProviderNotFoundError(ProviderError):
    """Provider answered 404 for the requested resource."""

    pass


class ProviderResponseError(ProviderError):
    """Provider answered with a payload we cannot use."""

    pass


class PlexServerError(ProviderError):
    """Plex server discovery failed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "plex")


class NoSuchServerError(PlexServerError):
    """Configured server identifier is not in the account's resources."""

    pass


class AmbiguousServerError(PlexServerError):
    """More than one Plex server could be the configured one."""

    def __init__(self, message: str, candidates: list[str]) -> None:
        super().__init__(message)
        self.candidates = candidates


class NoIdentifierError(PlexServerError):
    """No usable machine identifier could be resolved."""

    pass


class WebhookVerificationError(AdapterError):
    """Webhook payload failed signature verification."""

    pass
