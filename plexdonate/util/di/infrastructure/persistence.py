"""Persistence infrastructure providers."""

from collections.abc import AsyncIterator

import logfire
from dishka import Scope, provide
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from plexdonate.config import Settings
from plexdonate.domain.repository import (
    DonorRepository,
    EventRepository,
    InviteRepository,
    PaymentRepository,
    ShareLinkRepository,
)
from plexdonate.persistence.database import (
    DatabaseHealth,
    SqlDatabaseHealth,
    create_engine,
    create_session_factory,
)
from plexdonate.persistence.repository import (
    SqlDonorRepository,
    SqlEventRepository,
    SqlInviteRepository,
    SqlPaymentRepository,
    SqlShareLinkRepository,
)
from plexdonate.util.di.base import ProviderBase
from plexdonate.util.observability import instrument_sqlalchemy


class PersistenceProvider(ProviderBase):
    """Persistence component base."""

    __mock_component__ = "persistence"


class ProdPersistenceProvider(PersistenceProvider):
    """Production persistence provider using SQLite or PostgreSQL."""

    __is_mock__ = False

    scope = Scope.APP

    @provide(scope=Scope.APP)
    async def get_engine(self, settings: Settings) -> AsyncIterator[AsyncEngine]:
        """Provide database engine, disposed when the container closes."""
        engine = create_engine(settings)
        instrument_sqlalchemy(engine)
        yield engine
        await engine.dispose()

    @provide(scope=Scope.APP)
    def get_session_factory(
        self, engine: AsyncEngine
    ) -> async_sessionmaker[AsyncSession]:
        """Provide session factory."""
        return create_session_factory(engine)

    @provide(scope=Scope.APP)
    def get_database_health(self, engine: AsyncEngine) -> DatabaseHealth:
        """Provide the database connectivity check."""
        return SqlDatabaseHealth(engine)

    @provide(scope=Scope.REQUEST)
    async def get_session(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> AsyncIterator[AsyncSession]:
        """Provide database session for request scope.

        Repositories commit each write themselves; anything left pending when
        the request fails is rolled back.
        """
        async with session_factory() as session:
            try:
                yield session
            except Exception as e:
                logfire.warn("Session rollback", error=str(e))
                await session.rollback()
                raise

    @provide(scope=Scope.REQUEST)
    def get_donor_repository(self, session: AsyncSession) -> DonorRepository:
        """Provide Donor repository."""
        return SqlDonorRepository(session)

    @provide(scope=Scope.REQUEST)
    def get_invite_repository(self, session: AsyncSession) -> InviteRepository:
        """Provide Invite repository."""
        return SqlInviteRepository(session)

    @provide(scope=Scope.REQUEST)
    def get_payment_repository(self, session: AsyncSession) -> PaymentRepository:
        """Provide Payment repository."""
        return SqlPaymentRepository(session)

    @provide(scope=Scope.REQUEST)
    def get_event_repository(self, session: AsyncSession) -> EventRepository:
        """Provide audit Event repository."""
        return SqlEventRepository(session)

    @provide(scope=Scope.REQUEST)
    def get_share_link_repository(self, session: AsyncSession) -> ShareLinkRepository:
        """Provide share link repository."""
        return SqlShareLinkRepository(session)
