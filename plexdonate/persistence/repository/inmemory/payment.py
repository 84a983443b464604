"""In-memory payment repository for testing."""

from typing import Optional

from plexdonate.domain.model import Payment, PaymentDraft
from plexdonate.domain.repository import PaymentRepository
from plexdonate.domain.value import DonorId, PaymentId, Provider

from .database import InMemoryDatabase


class InMemoryPaymentRepository(PaymentRepository):
    """In-memory implementation of PaymentRepository for testing."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self.db = database

    async def record(self, draft: PaymentDraft) -> Payment:
        existing = await self.find_by_provider_payment_id(
            draft.provider, draft.provider_payment_id
        )
        if existing is not None:
            return existing
        payment = Payment(id=PaymentId(self.db.next_id("payments")), **draft.model_dump())
        self.db.payments[payment.id] = payment
        return payment

    async def find_by_provider_payment_id(
        self, provider: Provider, provider_payment_id: str
    ) -> Optional[Payment]:
        for payment in self.db.payments.values():
            if (
                payment.provider == provider
                and payment.provider_payment_id == provider_payment_id
            ):
                return payment
        return None

    async def list_for_donor(self, donor_id: DonorId) -> list[Payment]:
        return sorted(
            (p for p in self.db.payments.values() if p.donor_id == donor_id),
            key=lambda payment: (payment.paid_at, payment.id),
            reverse=True,
        )
