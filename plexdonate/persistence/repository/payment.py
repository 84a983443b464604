"""SQL implementation of Payment repository."""

from typing import Optional

from sqlalchemy import and_, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plexdonate.domain.model import Payment, PaymentDraft
from plexdonate.domain.model.common import utcnow
from plexdonate.domain.repository import PaymentRepository
from plexdonate.domain.value import DonorId, PaymentId, Provider
from plexdonate.persistence.mappers import row_to_payment
from plexdonate.persistence.tables import payments_table


class SqlPaymentRepository(PaymentRepository):
    """SQLAlchemy Core implementation of PaymentRepository."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(self, draft: PaymentDraft) -> Payment:
        """Insert a payment, returning the existing row on a duplicate id."""
        values = draft.model_dump()
        values["provider"] = draft.provider.value
        try:
            result = await self.session.execute(
                insert(payments_table).values(**values, created_at=utcnow())
            )
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            existing = await self.find_by_provider_payment_id(
                draft.provider, draft.provider_payment_id
            )
            if existing is None:
                raise
            return existing

        stmt = select(payments_table).where(
            payments_table.c.id == PaymentId(result.inserted_primary_key[0])
        )
        row = (await self.session.execute(stmt)).mappings().one()
        return row_to_payment(dict(row))

    async def find_by_provider_payment_id(
        self, provider: Provider, provider_payment_id: str
    ) -> Optional[Payment]:
        stmt = select(payments_table).where(
            and_(
                payments_table.c.provider == provider.value,
                payments_table.c.provider_payment_id == provider_payment_id,
            )
        )
        row = (await self.session.execute(stmt)).mappings().first()
        return row_to_payment(dict(row)) if row else None

    async def list_for_donor(self, donor_id: DonorId) -> list[Payment]:
        stmt = (
            select(payments_table)
            .where(payments_table.c.donor_id == donor_id)
            .order_by(payments_table.c.paid_at.desc(), payments_table.c.id.desc())
        )
        result = await self.session.execute(stmt)
        return [row_to_payment(dict(row)) for row in result.mappings().all()]
