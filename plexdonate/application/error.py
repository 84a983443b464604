"""Application layer errors."""


class ApplicationError(Exception):
    """Base application error."""

    pass


class LockTimeoutError(ApplicationError):
    """The per-subscription lock was not acquired in time. Retryable."""

    def __init__(self, key: tuple[str, str], timeout_seconds: float) -> None:
        self.key = key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds:g}s waiting for lock {key[0]}:{key[1]}"
        )


class StoreError(ApplicationError):
    """The store failed while processing an event; the provider must redeliver."""

    pass


class EventRejectedError(ApplicationError):
    """A webhook could not be parsed or verified."""

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason or message
