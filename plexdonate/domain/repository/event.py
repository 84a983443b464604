"""Audit event repository interface."""

from abc import ABC, abstractmethod
from typing import Any

from plexdonate.domain.model.event import AuditEvent


class EventRepository(ABC):
    """Append-only audit log."""

    @abstractmethod
    async def log(self, event_type: str, payload: dict[str, Any]) -> AuditEvent:
        """Append an audit event.

        Args:
            event_type: Dotted event name, e.g. ``plex.access.revoked``
            payload: JSON-serializable details

        Returns:
            The stored event
        """
        pass

    @abstractmethod
    async def list_recent(
        self, limit: int = 50, event_type: str | None = None
    ) -> list[AuditEvent]:
        """Most recent events first, optionally filtered by type."""
        pass
