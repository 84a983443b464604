"""Domain layer errors."""


class DomainError(Exception):
    """Base domain error."""

    pass


class ValidationError(DomainError):
    """Domain validation error (bad email, missing id)."""

    pass


class BusinessRuleViolationError(DomainError):
    """Business rule violation error."""

    pass


class ConflictError(DomainError):
    """Raised when a concurrent writer won a uniqueness race."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"Conflicting {resource} for {identifier}")


class NotFoundError(DomainError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")
