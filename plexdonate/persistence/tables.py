"""SQLAlchemy table definitions for plex-donate.

These definitions match the schema produced by the Alembic migrations and
are used with SQLAlchemy Core (no ORM mapping).
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    false,
    func,
)


class UtcDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite has no timezone support, so values are stored as naive UTC and
    tagged with UTC again on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Metadata object for all tables
metadata = MetaData()

# ============================================================================
# DONORS TABLE
# ============================================================================
donors_table = Table(
    "donors",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=True),
    Column("name", String(255), nullable=True),
    Column("payment_provider", String(20), nullable=True),  # 'paypal', 'stripe'
    Column("subscription_id", String(128), nullable=True),  # PayPal subscription
    Column("stripe_customer_id", String(128), nullable=True),
    Column("stripe_subscription_id", String(128), nullable=True),
    Column("plex_account_id", String(128), nullable=True),
    Column("plex_email", String(255), nullable=True),
    Column("status", String(32), nullable=False, server_default="pending"),
    Column("access_expires_at", UtcDateTime, nullable=True),
    Column(
        "had_preexisting_access", Boolean, nullable=False, server_default=false()
    ),
    Column("last_payment_at", UtcDateTime, nullable=True),
    Column("paypal_refresh_error", Text, nullable=True),
    Column("last_refreshed_at", UtcDateTime, nullable=True),
    Column("trial_reminder_sent_at", UtcDateTime, nullable=True),
    Column("created_at", UtcDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UtcDateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("subscription_id", name="uq_donors_subscription_id"),
    UniqueConstraint(
        "stripe_subscription_id", name="uq_donors_stripe_subscription_id"
    ),
)

Index("idx_donors_email", donors_table.c.email)
Index("idx_donors_stripe_customer_id", donors_table.c.stripe_customer_id)
Index(
    "idx_donors_access_expires_at",
    donors_table.c.status,
    donors_table.c.access_expires_at,
)

# ============================================================================
# INVITES TABLE
# ============================================================================
invites_table = Table(
    "invites",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "donor_id",
        Integer,
        ForeignKey("donors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("plex_invite_id", String(128), nullable=True),
    Column("invite_url", Text, nullable=True),
    Column("invite_status", String(64), nullable=True),
    Column("invited_at", UtcDateTime, nullable=True),
    Column("plex_invited_at", UtcDateTime, nullable=True),
    Column("shared_libraries", JSON, nullable=True),  # [{id, title}]
    Column("recipient_email", String(255), nullable=True),
    Column("plex_account_id", String(128), nullable=True),
    Column("plex_email", String(255), nullable=True),
    Column("note", Text, nullable=True),
    Column("email_sent_at", UtcDateTime, nullable=True),
    Column("revoked_at", UtcDateTime, nullable=True),
    Column("plex_revoked_at", UtcDateTime, nullable=True),
    Column("created_at", UtcDateTime, nullable=False, server_default=func.now()),
)

Index("idx_invites_donor_id", invites_table.c.donor_id)
# One active invite per donor
Index(
    "uq_invites_active_donor",
    invites_table.c.donor_id,
    unique=True,
    sqlite_where=invites_table.c.revoked_at.is_(None),
    postgresql_where=invites_table.c.revoked_at.is_(None),
)

# ============================================================================
# PAYMENTS TABLE (append-only)
# ============================================================================
payments_table = Table(
    "payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "donor_id",
        Integer,
        ForeignKey("donors.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("provider", String(20), nullable=False, server_default="paypal"),
    Column("provider_payment_id", String(128), nullable=False),
    Column("amount", Numeric(12, 2), nullable=True),
    Column("currency", String(8), nullable=True),
    Column("paid_at", UtcDateTime, nullable=False),
    Column("created_at", UtcDateTime, nullable=False, server_default=func.now()),
    UniqueConstraint(
        "provider", "provider_payment_id", name="uq_payments_provider_payment"
    ),
)

Index("idx_payments_donor_id", payments_table.c.donor_id)

# ============================================================================
# EVENTS TABLE (audit log)
# ============================================================================
events_table = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_type", String(100), nullable=False),
    Column("payload", JSON, nullable=True),
    Column("created_at", UtcDateTime, nullable=False, server_default=func.now()),
)

Index("idx_events_type_created", events_table.c.event_type, events_table.c.created_at)

# ============================================================================
# PROSPECTS AND SHARE LINKS
# ============================================================================
prospects_table = Table(
    "prospects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=True),
    Column("name", String(255), nullable=True),
    Column("note", Text, nullable=True),
    Column("created_at", UtcDateTime, nullable=False, server_default=func.now()),
)

invite_links_table = Table(
    "invite_links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column(
        "donor_id",
        Integer,
        ForeignKey("donors.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column(
        "prospect_id",
        Integer,
        ForeignKey("prospects.id", ondelete="CASCADE"),
        nullable=True,
    ),
    Column("created_at", UtcDateTime, nullable=False, server_default=func.now()),
    Column("last_used_at", UtcDateTime, nullable=True),
)

Index(
    "invite_links_donor_unique",
    invite_links_table.c.donor_id,
    unique=True,
    sqlite_where=invite_links_table.c.donor_id.is_not(None),
    postgresql_where=invite_links_table.c.donor_id.is_not(None),
)
Index(
    "invite_links_prospect_unique",
    invite_links_table.c.prospect_id,
    unique=True,
    sqlite_where=invite_links_table.c.prospect_id.is_not(None),
    postgresql_where=invite_links_table.c.prospect_id.is_not(None),
)
