"""SQL implementation of Donor repository."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from plexdonate.domain.error import NotFoundError
from plexdonate.domain.model import Donor, DonorFields
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.repository import DonorRepository
from plexdonate.domain.value import (
    EXPIRABLE_STATUSES,
    DonorId,
    DonorStatus,
    Provider,
    normalize_email,
)
from plexdonate.persistence.mappers import row_to_donor
from plexdonate.persistence.tables import (
    donors_table,
    invite_links_table,
    invites_table,
    payments_table,
)


def _subscription_column(provider: Provider):
    if provider == Provider.STRIPE:
        return donors_table.c.stripe_subscription_id
    return donors_table.c.subscription_id


def _column_values(changes: dict[str, Any]) -> dict[str, Any]:
    values = dict(changes)
    if isinstance(values.get("status"), DonorStatus):
        values["status"] = values["status"].value
    if isinstance(values.get("payment_provider"), Provider):
        values["payment_provider"] = values["payment_provider"].value
    if "email" in values:
        values["email"] = normalize_email(values["email"]) or None
    if values.get("status") == DonorStatus.ACTIVE.value:
        values["access_expires_at"] = None
    return values


class SqlDonorRepository(DonorRepository):
    """SQLAlchemy Core implementation of DonorRepository.

    Each write commits on its own so the single SQLite writer is never held
    across provider calls.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def _find_one(self, *criteria) -> Optional[Donor]:
        stmt = (
            select(donors_table)
            .where(*criteria)
            .order_by(donors_table.c.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        return row_to_donor(dict(row)) if row else None

    async def _find_many(self, *criteria) -> list[Donor]:
        stmt = select(donors_table).where(*criteria).order_by(donors_table.c.id)
        result = await self.session.execute(stmt)
        return [row_to_donor(dict(row)) for row in result.mappings().all()]

    async def _update_where(self, criteria, values: dict[str, Any]) -> bool:
        stmt = (
            update(donors_table)
            .where(criteria)
            .values(**_column_values(values), updated_at=utcnow())
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0

    async def find_by_id(self, donor_id: DonorId) -> Optional[Donor]:
        return await self._find_one(donors_table.c.id == donor_id)

    async def find_by_subscription(
        self, provider: Provider, subscription_id: str
    ) -> Optional[Donor]:
        return await self._find_one(_subscription_column(provider) == subscription_id)

    async def find_by_stripe_customer(self, customer_id: str) -> Optional[Donor]:
        return await self._find_one(donors_table.c.stripe_customer_id == customer_id)

    async def find_by_email(self, email: str) -> Optional[Donor]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        return await self._find_one(func.lower(donors_table.c.email) == normalized)

    async def upsert_by_subscription(
        self, provider: Provider, subscription_id: str, fields: DonorFields
    ) -> Donor:
        """Insert or update the donor owning a subscription.

        A Stripe donor linked by customer id before the subscription existed
        is updated in place and gains the subscription id.
        """
        changes = fields.changes()
        existing = await self.find_by_subscription(provider, subscription_id)
        if existing is None and provider == Provider.STRIPE:
            customer_id = changes.get("stripe_customer_id")
            if customer_id:
                existing = await self.find_by_stripe_customer(customer_id)
                if existing and existing.stripe_subscription_id:
                    existing = None

        now = utcnow()
        if existing is not None:
            values = _column_values(changes)
            if provider == Provider.STRIPE:
                values["stripe_subscription_id"] = subscription_id
            values.setdefault("payment_provider", provider.value)
            stmt = (
                update(donors_table)
                .where(donors_table.c.id == existing.id)
                .values(**values, updated_at=now)
            )
            await self.session.execute(stmt)
            await self.session.commit()
            donor_id = existing.id
        else:
            values = _column_values(changes)
            values.setdefault("payment_provider", provider.value)
            values.setdefault("status", DonorStatus.PENDING.value)
            values[_subscription_column(provider).name] = subscription_id
            stmt = insert(donors_table).values(**values, created_at=now, updated_at=now)
            result = await self.session.execute(stmt)
            await self.session.commit()
            donor_id = DonorId(result.inserted_primary_key[0])

        donor = await self.find_by_id(donor_id)
        if donor is None:
            raise NotFoundError("Donor", str(donor_id))
        return donor

    async def update_status(
        self,
        provider: Provider,
        subscription_id: str,
        status: DonorStatus,
        last_payment_at: datetime | None = None,
    ) -> Optional[Donor]:
        values: dict[str, Any] = {"status": status}
        if last_payment_at is not None:
            values["last_payment_at"] = last_payment_at
        column = _subscription_column(provider)
        if not await self._update_where(column == subscription_id, values):
            return None
        return await self.find_by_subscription(provider, subscription_id)

    async def set_access_expiration(
        self, provider: Provider, subscription_id: str, expires_at: datetime | None
    ) -> Optional[Donor]:
        column = _subscription_column(provider)
        if not await self._update_where(
            column == subscription_id, {"access_expires_at": expires_at}
        ):
            return None
        return await self.find_by_subscription(provider, subscription_id)

    async def set_access_expiration_by_id(
        self, donor_id: DonorId, expires_at: datetime | None
    ) -> Optional[Donor]:
        if not await self._update_where(
            donors_table.c.id == donor_id, {"access_expires_at": expires_at}
        ):
            return None
        return await self.find_by_id(donor_id)

    async def set_status_by_id(
        self, donor_id: DonorId, status: DonorStatus
    ) -> Optional[Donor]:
        if not await self._update_where(donors_table.c.id == donor_id, {"status": status}):
            return None
        return await self.find_by_id(donor_id)

    async def update(self, donor_id: DonorId, fields: DonorFields) -> Optional[Donor]:
        if not await self._update_where(donors_table.c.id == donor_id, fields.changes()):
            return None
        return await self.find_by_id(donor_id)

    async def delete(self, donor_id: DonorId) -> bool:
        """Delete a donor with its invites, payments and share links.

        Children are removed explicitly as well, so the cascade holds even on
        connections without foreign key enforcement.
        """
        try:
            for table in (invites_table, payments_table, invite_links_table):
                await self.session.execute(
                    delete(table).where(table.c.donor_id == donor_id)
                )
            result = await self.session.execute(
                delete(donors_table).where(donors_table.c.id == donor_id)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return result.rowcount > 0

    async def list_with_expired_access(self, now: datetime) -> list[Donor]:
        return await self._find_many(
            donors_table.c.status.in_([status.value for status in EXPIRABLE_STATUSES]),
            donors_table.c.access_expires_at.is_not(None),
            donors_table.c.access_expires_at < now,
        )

    async def list_trials_ending_between(
        self, start: datetime, end: datetime
    ) -> list[Donor]:
        return await self._find_many(
            donors_table.c.status == DonorStatus.TRIAL.value,
            donors_table.c.trial_reminder_sent_at.is_(None),
            donors_table.c.access_expires_at > start,
            donors_table.c.access_expires_at <= end,
        )

    async def list_with_subscription(self) -> list[Donor]:
        return await self._find_many(
            or_(
                and_(
                    donors_table.c.subscription_id.is_not(None),
                    donors_table.c.subscription_id != "",
                ),
                donors_table.c.stripe_subscription_id.is_not(None),
            )
        )

    async def list_with_plex_identity(self) -> list[Donor]:
        return await self._find_many(
            or_(
                donors_table.c.plex_account_id.is_not(None),
                donors_table.c.plex_email.is_not(None),
            )
        )

    async def list_all(self) -> list[Donor]:
        stmt = select(donors_table).order_by(
            donors_table.c.created_at.desc(), donors_table.c.id.desc()
        )
        result = await self.session.execute(stmt)
        return [row_to_donor(dict(row)) for row in result.mappings().all()]
