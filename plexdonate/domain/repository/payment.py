"""Payment repository interface."""

from abc import ABC, abstractmethod

from plexdonate.domain.model.payment import Payment, PaymentDraft
from plexdonate.domain.value import DonorId, Provider


class PaymentRepository(ABC):
    """Repository for Payment entity (append-only)."""

    @abstractmethod
    async def record(self, draft: PaymentDraft) -> Payment:
        """Record a payment, idempotent on ``(provider, provider_payment_id)``.

        Args:
            draft: Payment fields

        Returns:
            The new payment, or the existing one when the id was seen before
        """
        pass

    @abstractmethod
    async def find_by_provider_payment_id(
        self, provider: Provider, provider_payment_id: str
    ) -> Payment | None:
        pass

    @abstractmethod
    async def list_for_donor(self, donor_id: DonorId) -> list[Payment]:
        """All payments of a donor, most recent first."""
        pass
