"""donor_lifecycle_columns

Evolve the legacy tables for multi-provider subscriptions and Plex access:
- Donors gain Stripe ids, Plex identity, access expiration, the
  pre-existing access flag and PayPal refresh bookkeeping
- Invites move from Wizarr codes to Plex invite snapshots
- Payments record their provider and are unique per provider payment id
- At most one active (unrevoked) invite per donor

Every change is additive. Legacy column names are renamed in place, rows are
never dropped.

Revision ID: 9c4e81d2a6f3
Revises: 3f1c2a9b7d01
Create Date: 2025-07-14 08:37:05.911342

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "9c4e81d2a6f3"
down_revision: Union[str, Sequence[str], None] = "3f1c2a9b7d01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _donor_columns() -> list[sa.Column]:
    return [
        sa.Column("payment_provider", sa.String(20), nullable=True),
        sa.Column("stripe_customer_id", sa.String(128), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(128), nullable=True),
        sa.Column("plex_account_id", sa.String(128), nullable=True),
        sa.Column("plex_email", sa.String(255), nullable=True),
        sa.Column("access_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "had_preexisting_access",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("paypal_refresh_error", sa.Text(), nullable=True),
        sa.Column("last_refreshed_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _invite_columns() -> list[sa.Column]:
    return [
        sa.Column("invite_status", sa.String(64), nullable=True),
        sa.Column("invited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("plex_invited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("shared_libraries", sa.JSON(), nullable=True),
        sa.Column("recipient_email", sa.String(255), nullable=True),
        sa.Column("plex_account_id", sa.String(128), nullable=True),
        sa.Column("plex_email", sa.String(255), nullable=True),
    ]


def _columns(table: str) -> set[str]:
    return {c["name"] for c in sa.inspect(op.get_bind()).get_columns(table)}


def _indexes(table: str) -> set[str]:
    return {i["name"] for i in sa.inspect(op.get_bind()).get_indexes(table)}


def _has_unique_on(table: str, column: str) -> bool:
    inspector = sa.inspect(op.get_bind())
    uniques = [u["column_names"] for u in inspector.get_unique_constraints(table)]
    uniques += [
        i["column_names"] for i in inspector.get_indexes(table) if i.get("unique")
    ]
    return [column] in uniques


def _upgrade_donors() -> None:
    existing = _columns("donors")
    with op.batch_alter_table("donors") as batch_op:
        if "paypal_subscription_id" in existing:
            batch_op.alter_column(
                "paypal_subscription_id",
                new_column_name="subscription_id",
                existing_type=sa.String(128),
                nullable=True,
            )
        batch_op.alter_column("email", existing_type=sa.String(255), nullable=True)
        for column in _donor_columns():
            if column.name not in existing:
                batch_op.add_column(column)

    with op.batch_alter_table("donors") as batch_op:
        if not _has_unique_on("donors", "subscription_id"):
            batch_op.create_unique_constraint(
                "uq_donors_subscription_id", ["subscription_id"]
            )
        if not _has_unique_on("donors", "stripe_subscription_id"):
            batch_op.create_unique_constraint(
                "uq_donors_stripe_subscription_id", ["stripe_subscription_id"]
            )

    indexes = _indexes("donors")
    if "idx_donors_email" not in indexes:
        op.create_index("idx_donors_email", "donors", ["email"])
    if "idx_donors_stripe_customer_id" not in indexes:
        op.create_index(
            "idx_donors_stripe_customer_id", "donors", ["stripe_customer_id"]
        )
    if "idx_donors_access_expires_at" not in indexes:
        op.create_index(
            "idx_donors_access_expires_at", "donors", ["status", "access_expires_at"]
        )


def _upgrade_invites() -> None:
    existing = _columns("invites")
    with op.batch_alter_table("invites") as batch_op:
        if "wizarr_invite_code" in existing:
            batch_op.alter_column(
                "wizarr_invite_code",
                new_column_name="plex_invite_id",
                existing_type=sa.String(128),
            )
        if "wizarr_invite_url" in existing:
            batch_op.alter_column(
                "wizarr_invite_url",
                new_column_name="invite_url",
                existing_type=sa.Text(),
            )
        for column in _invite_columns():
            if column.name not in existing:
                batch_op.add_column(column)

    # Keep only the newest active invite per donor before enforcing uniqueness
    op.execute(
        """
        UPDATE invites
        SET revoked_at = CURRENT_TIMESTAMP
        WHERE revoked_at IS NULL
          AND id NOT IN (
            SELECT MAX(id) FROM invites WHERE revoked_at IS NULL GROUP BY donor_id
          )
        """
    )

    indexes = _indexes("invites")
    if "idx_invites_donor_id" not in indexes:
        op.create_index("idx_invites_donor_id", "invites", ["donor_id"])
    if "uq_invites_active_donor" not in indexes:
        op.create_index(
            "uq_invites_active_donor",
            "invites",
            ["donor_id"],
            unique=True,
            sqlite_where=sa.text("revoked_at IS NULL"),
            postgresql_where=sa.text("revoked_at IS NULL"),
        )


def _upgrade_payments() -> None:
    existing = _columns("payments")
    with op.batch_alter_table("payments") as batch_op:
        if "provider" not in existing:
            batch_op.add_column(
                sa.Column(
                    "provider", sa.String(20), nullable=False, server_default="paypal"
                )
            )
        if "paypal_payment_id" in existing:
            batch_op.alter_column(
                "paypal_payment_id",
                new_column_name="provider_payment_id",
                existing_type=sa.String(128),
            )

    # Legacy rows could lack an id or repeat one
    op.execute(
        "UPDATE payments SET provider_payment_id = 'legacy-' || CAST(id AS VARCHAR) "
        "WHERE provider_payment_id IS NULL"
    )
    op.execute(
        """
        UPDATE payments
        SET provider_payment_id = provider_payment_id || '-dup-' || CAST(id AS VARCHAR)
        WHERE id NOT IN (
            SELECT MIN(id) FROM payments GROUP BY provider, provider_payment_id
        )
        """
    )

    with op.batch_alter_table("payments") as batch_op:
        batch_op.alter_column(
            "provider_payment_id", existing_type=sa.String(128), nullable=False
        )
        if "uq_payments_provider_payment" not in {
            u["name"]
            for u in sa.inspect(op.get_bind()).get_unique_constraints("payments")
        }:
            batch_op.create_unique_constraint(
                "uq_payments_provider_payment", ["provider", "provider_payment_id"]
            )

    if "idx_payments_donor_id" not in _indexes("payments"):
        op.create_index("idx_payments_donor_id", "payments", ["donor_id"])


def upgrade() -> None:
    """Upgrade schema."""
    _upgrade_donors()
    _upgrade_invites()
    _upgrade_payments()

    if "idx_events_type_created" not in _indexes("events"):
        op.create_index(
            "idx_events_type_created", "events", ["event_type", "created_at"]
        )


def downgrade() -> None:
    """Downgrade schema.

    Columns added here are dropped. Renamed columns get their legacy names
    back.
    """
    op.drop_index("idx_events_type_created", table_name="events")

    op.drop_index("idx_payments_donor_id", table_name="payments")
    with op.batch_alter_table("payments") as batch_op:
        batch_op.drop_constraint("uq_payments_provider_payment", type_="unique")
        batch_op.alter_column(
            "provider_payment_id",
            new_column_name="paypal_payment_id",
            existing_type=sa.String(128),
            nullable=True,
        )
        batch_op.drop_column("provider")

    op.drop_index("uq_invites_active_donor", table_name="invites")
    op.drop_index("idx_invites_donor_id", table_name="invites")
    with op.batch_alter_table("invites") as batch_op:
        for column in reversed(_invite_columns()):
            batch_op.drop_column(column.name)
        batch_op.alter_column(
            "invite_url", new_column_name="wizarr_invite_url", existing_type=sa.Text()
        )
        batch_op.alter_column(
            "plex_invite_id",
            new_column_name="wizarr_invite_code",
            existing_type=sa.String(128),
        )

    op.drop_index("idx_donors_access_expires_at", table_name="donors")
    op.drop_index("idx_donors_stripe_customer_id", table_name="donors")
    op.drop_index("idx_donors_email", table_name="donors")
    with op.batch_alter_table("donors") as batch_op:
        batch_op.drop_constraint("uq_donors_stripe_subscription_id", type_="unique")
        for column in reversed(_donor_columns()):
            batch_op.drop_column(column.name)
        batch_op.alter_column(
            "subscription_id",
            new_column_name="paypal_subscription_id",
            existing_type=sa.String(128),
        )
