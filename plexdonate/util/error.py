"""Utility layer errors."""


class UtilError(Exception):
    """Base utility error."""

    pass


class DependencyInjectionError(UtilError):
    """No provider implementation matches the requested component."""

    def __init__(self, component: str, kind: str) -> None:
        self.component = component
        self.kind = kind
        super().__init__(f"No {kind} implementation for {component}")
