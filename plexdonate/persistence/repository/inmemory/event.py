"""In-memory audit event repository for testing."""

from typing import Any

from plexdonate.domain.model import AuditEvent
from plexdonate.domain.repository import EventRepository
from plexdonate.domain.value import EventId

from .database import InMemoryDatabase


class InMemoryEventRepository(EventRepository):
    """In-memory implementation of EventRepository for testing."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self.db = database

    async def log(self, event_type: str, payload: dict[str, Any]) -> AuditEvent:
        event = AuditEvent(
            id=EventId(self.db.next_id("events")),
            event_type=event_type,
            payload=payload,
        )
        self.db.events.append(event)
        return event

    async def list_recent(
        self, limit: int = 50, event_type: str | None = None
    ) -> list[AuditEvent]:
        events = [
            event
            for event in reversed(self.db.events)
            if event_type is None or event.event_type == event_type
        ]
        return events[:limit]
