"""Audit trail domain service."""

from typing import Any

import logfire
from pydantic_core import to_jsonable_python

from plexdonate.domain.model.event import AuditEvent
from plexdonate.domain.repository import EventRepository

from .base import Service


class AuditService(Service):
    """Appends typed business facts to the events table."""

    def __init__(self, event_repository: EventRepository) -> None:
        self.event_repository = event_repository

    async def log(self, event_type: str, **payload: Any) -> AuditEvent:
        """Record an audit event.

        ``None`` values are dropped and the rest converted to JSON-safe values.

        Args:
            event_type: Dotted event name
            **payload: Event details

        Returns:
            The stored event
        """
        cleaned = {key: value for key, value in payload.items() if value is not None}
        event = await self.event_repository.log(event_type, to_jsonable_python(cleaned))
        logfire.info("Audit event", event_type=event_type, event_id=event.id)
        return event

    async def list_recent(
        self, limit: int = 50, event_type: str | None = None
    ) -> list[AuditEvent]:
        return await self.event_repository.list_recent(limit, event_type)
