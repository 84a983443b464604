"""Audit event entity."""

from datetime import datetime
from typing import Any

from pydantic import Field

from plexdonate.domain.model.common import DomainModel, utcnow
from plexdonate.domain.value import EventId


class AuditEvent(DomainModel):
    """Typed business fact with a JSON payload. Append-only."""

    id: EventId
    event_type: str
    payload: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utcnow)
