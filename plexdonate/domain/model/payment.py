"""Payment entity (append-only)."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from plexdonate.domain.model.common import DomainModel, utcnow
from plexdonate.domain.value import DonorId, PaymentId, Provider


class Payment(DomainModel):
    """A successful provider payment. Never mutated once recorded."""

    id: PaymentId
    donor_id: DonorId
    provider: Provider
    provider_payment_id: str
    amount: Decimal | None = None
    currency: str | None = None
    paid_at: datetime
    created_at: datetime = Field(default_factory=utcnow)


class PaymentDraft(BaseModel):
    """Fields for recording a payment."""

    donor_id: DonorId
    provider: Provider
    provider_payment_id: str
    amount: Decimal | None = None
    currency: str | None = None
    paid_at: datetime
