"""In-memory donor repository for testing."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError

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

from .database import InMemoryDatabase


def _subscription_field(provider: Provider) -> str:
    return "stripe_subscription_id" if provider == Provider.STRIPE else "subscription_id"


class InMemoryDonorRepository(DonorRepository):
    """In-memory implementation of DonorRepository for testing."""

    def __init__(self, database: InMemoryDatabase) -> None:
        self.db = database

    def _write(self, donor: Donor, changes: dict[str, Any]) -> Donor:
        changes = dict(changes)
        if "email" in changes:
            changes["email"] = normalize_email(changes["email"]) or None
        if changes.get("status") == DonorStatus.ACTIVE:
            changes["access_expires_at"] = None
        for field in ("subscription_id", "stripe_subscription_id"):
            value = changes.get(field)
            if value and any(
                getattr(other, field) == value and other.id != donor.id
                for other in self.db.donors.values()
            ):
                raise IntegrityError(f"Duplicate {field}", None, Exception())
        updated = donor.model_copy(update={**changes, "updated_at": utcnow()})
        self.db.donors[updated.id] = updated
        return updated

    async def find_by_id(self, donor_id: DonorId) -> Optional[Donor]:
        return self.db.donors.get(donor_id)

    async def find_by_subscription(
        self, provider: Provider, subscription_id: str
    ) -> Optional[Donor]:
        field = _subscription_field(provider)
        for donor in self.db.donors.values():
            if getattr(donor, field) == subscription_id:
                return donor
        return None

    async def find_by_stripe_customer(self, customer_id: str) -> Optional[Donor]:
        matches = [
            donor
            for donor in self.db.donors.values()
            if donor.stripe_customer_id == customer_id
        ]
        return matches[-1] if matches else None

    async def find_by_email(self, email: str) -> Optional[Donor]:
        normalized = normalize_email(email)
        for donor in reversed(list(self.db.donors.values())):
            if normalized and donor.email == normalized:
                return donor
        return None

    async def upsert_by_subscription(
        self, provider: Provider, subscription_id: str, fields: DonorFields
    ) -> Donor:
        changes = fields.changes()
        existing = await self.find_by_subscription(provider, subscription_id)
        if existing is None and provider == Provider.STRIPE:
            customer_id = changes.get("stripe_customer_id")
            if customer_id:
                existing = await self.find_by_stripe_customer(customer_id)
                if existing and existing.stripe_subscription_id:
                    existing = None

        if existing is not None:
            changes.setdefault("payment_provider", existing.payment_provider or provider)
            if provider == Provider.STRIPE:
                changes["stripe_subscription_id"] = subscription_id
            return self._write(existing, changes)

        donor = Donor(
            id=DonorId(self.db.next_id("donors")),
            payment_provider=provider,
            **{_subscription_field(provider): subscription_id},
        )
        return self._write(donor, changes)

    async def update_status(
        self,
        provider: Provider,
        subscription_id: str,
        status: DonorStatus,
        last_payment_at: datetime | None = None,
    ) -> Optional[Donor]:
        donor = await self.find_by_subscription(provider, subscription_id)
        if donor is None:
            return None
        changes: dict[str, Any] = {"status": status}
        if last_payment_at is not None:
            changes["last_payment_at"] = last_payment_at
        return self._write(donor, changes)

    async def set_access_expiration(
        self, provider: Provider, subscription_id: str, expires_at: datetime | None
    ) -> Optional[Donor]:
        donor = await self.find_by_subscription(provider, subscription_id)
        if donor is None:
            return None
        return self._write(donor, {"access_expires_at": expires_at})

    async def set_access_expiration_by_id(
        self, donor_id: DonorId, expires_at: datetime | None
    ) -> Optional[Donor]:
        donor = self.db.donors.get(donor_id)
        if donor is None:
            return None
        return self._write(donor, {"access_expires_at": expires_at})

    async def set_status_by_id(
        self, donor_id: DonorId, status: DonorStatus
    ) -> Optional[Donor]:
        donor = self.db.donors.get(donor_id)
        if donor is None:
            return None
        return self._write(donor, {"status": status})

    async def update(self, donor_id: DonorId, fields: DonorFields) -> Optional[Donor]:
        donor = self.db.donors.get(donor_id)
        if donor is None:
            return None
        return self._write(donor, fields.changes())

    async def delete(self, donor_id: DonorId) -> bool:
        if self.db.donors.pop(donor_id, None) is None:
            return False
        for table in (self.db.invites, self.db.payments, self.db.share_links):
            for row_id in [
                key for key, row in table.items() if row.donor_id == donor_id
            ]:
                del table[row_id]
        return True

    async def list_with_expired_access(self, now: datetime) -> list[Donor]:
        return [
            donor
            for donor in self.db.donors.values()
            if donor.status in EXPIRABLE_STATUSES
            and donor.access_expires_at is not None
            and donor.access_expires_at < now
        ]

    async def list_trials_ending_between(
        self, start: datetime, end: datetime
    ) -> list[Donor]:
        return [
            donor
            for donor in self.db.donors.values()
            if donor.status == DonorStatus.TRIAL
            and donor.trial_reminder_sent_at is None
            and donor.access_expires_at is not None
            and start < donor.access_expires_at <= end
        ]

    async def list_with_subscription(self) -> list[Donor]:
        return [
            donor
            for donor in self.db.donors.values()
            if donor.subscription_id or donor.stripe_subscription_id
        ]

    async def list_with_plex_identity(self) -> list[Donor]:
        return [
            donor
            for donor in self.db.donors.values()
            if donor.plex_account_id or donor.plex_email
        ]

    async def list_all(self) -> list[Donor]:
        return sorted(
            self.db.donors.values(),
            key=lambda donor: (donor.created_at, donor.id),
            reverse=True,
        )
