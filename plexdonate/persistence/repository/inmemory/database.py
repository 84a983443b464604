"""Shared state for the in-memory repositories."""

from itertools import count

from plexdonate.domain.model import AuditEvent, Donor, Invite, Payment, ShareLink
from plexdonate.persistence.database import DatabaseHealth


class InMemoryDatabase:
    """Rows of every table, shared so that cascades and joins work."""

    def __init__(self) -> None:
        self.donors: dict[int, Donor] = {}
        self.invites: dict[int, Invite] = {}
        self.payments: dict[int, Payment] = {}
        self.events: list[AuditEvent] = []
        self.share_links: dict[int, ShareLink] = {}
        self._sequences: dict[str, count] = {}
        # Flip to simulate an unreachable store
        self.available = True

    def next_id(self, table: str) -> int:
        if table not in self._sequences:
            self._sequences[table] = count(1)
        return next(self._sequences[table])


class InMemoryDatabaseHealth(DatabaseHealth):
    def __init__(self, database: InMemoryDatabase) -> None:
        self.database = database

    async def check(self) -> bool:
        return self.database.available
