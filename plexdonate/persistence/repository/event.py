"""SQL implementation of the audit event repository."""

from typing import Any

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from plexdonate.domain.model import AuditEvent
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.repository import EventRepository
from plexdonate.domain.value import EventId
from plexdonate.persistence.mappers import row_to_event
from plexdonate.persistence.tables import events_table


class SqlEventRepository(EventRepository):
    """SQLAlchemy Core implementation of EventRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def log(self, event_type: str, payload: dict[str, Any]) -> AuditEvent:
        created_at = utcnow()
        result = await self.session.execute(
            insert(events_table).values(
                event_type=event_type, payload=payload, created_at=created_at
            )
        )
        await self.session.commit()
        return AuditEvent(
            id=EventId(result.inserted_primary_key[0]),
            event_type=event_type,
            payload=payload,
            created_at=created_at,
        )

    async def list_recent(
        self, limit: int = 50, event_type: str | None = None
    ) -> list[AuditEvent]:
        stmt = select(events_table).order_by(events_table.c.id.desc()).limit(limit)
        if event_type:
            stmt = stmt.where(events_table.c.event_type == event_type)
        result = await self.session.execute(stmt)
        return [row_to_event(dict(row)) for row in result.mappings().all()]
