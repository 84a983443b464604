"""Mappers for converting between database rows and domain models.

Domain models are immutable pydantic models, so rows are mapped by hand
instead of through an ORM.
"""

from decimal import Decimal
from typing import Any, Dict

from plexdonate.domain.model import AuditEvent, Donor, Invite, Payment, ShareLink
from plexdonate.domain.value import (
    DonorId,
    DonorStatus,
    EventId,
    InviteId,
    PaymentId,
    Provider,
    ProspectId,
    SharedLibrary,
    ShareLinkId,
)


def row_to_donor(row: Dict[str, Any]) -> Donor:
    """Convert database row to Donor domain model.

    Legacy status spellings (``approval_pending``, ``canceled``) are folded
    into the current statuses.
    """
    provider = row.get("payment_provider")
    return Donor(
        id=DonorId(row["id"]),
        email=row.get("email"),
        name=row.get("name"),
        payment_provider=Provider(provider) if provider else None,
        subscription_id=row.get("subscription_id"),
        stripe_customer_id=row.get("stripe_customer_id"),
        stripe_subscription_id=row.get("stripe_subscription_id"),
        plex_account_id=row.get("plex_account_id"),
        plex_email=row.get("plex_email"),
        status=DonorStatus.parse(row.get("status")),
        access_expires_at=row.get("access_expires_at"),
        had_preexisting_access=bool(row.get("had_preexisting_access")),
        last_payment_at=row.get("last_payment_at"),
        paypal_refresh_error=row.get("paypal_refresh_error"),
        last_refreshed_at=row.get("last_refreshed_at"),
        trial_reminder_sent_at=row.get("trial_reminder_sent_at"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def donor_to_dict(donor: Donor) -> Dict[str, Any]:
    """Convert Donor domain model to database dict."""
    data = donor.model_dump(mode="python")
    data["status"] = donor.status.value
    data["payment_provider"] = (
        donor.payment_provider.value if donor.payment_provider else None
    )
    return data


def row_to_invite(row: Dict[str, Any]) -> Invite:
    libraries = row.get("shared_libraries") or []
    return Invite(
        id=InviteId(row["id"]),
        donor_id=DonorId(row["donor_id"]),
        plex_invite_id=row.get("plex_invite_id"),
        invite_url=row.get("invite_url"),
        invite_status=row.get("invite_status"),
        invited_at=row.get("invited_at"),
        plex_invited_at=row.get("plex_invited_at"),
        shared_libraries=[
            SharedLibrary(id=str(entry.get("id")), title=entry.get("title"))
            for entry in libraries
            if isinstance(entry, dict) and entry.get("id") is not None
        ],
        recipient_email=row.get("recipient_email"),
        plex_account_id=row.get("plex_account_id"),
        plex_email=row.get("plex_email"),
        note=row.get("note"),
        email_sent_at=row.get("email_sent_at"),
        revoked_at=row.get("revoked_at"),
        plex_revoked_at=row.get("plex_revoked_at"),
        created_at=row["created_at"],
    )


def invite_to_dict(invite: Invite) -> Dict[str, Any]:
    data = invite.model_dump(mode="python")
    data["shared_libraries"] = [
        library.model_dump() for library in invite.shared_libraries
    ]
    return data


def row_to_payment(row: Dict[str, Any]) -> Payment:
    amount = row.get("amount")
    return Payment(
        id=PaymentId(row["id"]),
        donor_id=DonorId(row["donor_id"]),
        provider=Provider(row["provider"]),
        provider_payment_id=row["provider_payment_id"],
        amount=Decimal(str(amount)) if amount is not None else None,
        currency=row.get("currency"),
        paid_at=row["paid_at"],
        created_at=row["created_at"],
    )


def row_to_event(row: Dict[str, Any]) -> AuditEvent:
    return AuditEvent(
        id=EventId(row["id"]),
        event_type=row["event_type"],
        payload=row.get("payload") or {},
        created_at=row["created_at"],
    )


def row_to_share_link(row: Dict[str, Any]) -> ShareLink:
    donor_id = row.get("donor_id")
    prospect_id = row.get("prospect_id")
    return ShareLink(
        id=ShareLinkId(row["id"]),
        token=row["token"],
        donor_id=DonorId(donor_id) if donor_id is not None else None,
        prospect_id=ProspectId(prospect_id) if prospect_id is not None else None,
        created_at=row["created_at"],
        last_used_at=row.get("last_used_at"),
    )
