"""legacy_schema

Create the original plex-donate tables:
- Donors (PayPal subscriptions only)
- Invites (one row per invite issued to a donor)
- Payments (PayPal sale records)
- Events (append-only audit log)
- Settings (grouped key/value bag)

Stores created before migrations were tracked already hold these tables, so
each one is only created when absent.

Revision ID: 3f1c2a9b7d01
Revises:
Create Date: 2025-06-02 19:12:44.503218

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1c2a9b7d01"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _existing_tables() -> set[str]:
    return set(sa.inspect(op.get_bind()).get_table_names())


def upgrade() -> None:
    """Upgrade schema."""
    existing = _existing_tables()

    if "donors" not in existing:
        op.create_table(
            "donors",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("paypal_subscription_id", sa.String(128), nullable=False),
            sa.Column("status", sa.String(32), nullable=False, server_default="pending"),
            sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
            sa.UniqueConstraint(
                "paypal_subscription_id", name="uq_donors_paypal_subscription_id"
            ),
        )

    if "invites" not in existing:
        op.create_table(
            "invites",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "donor_id",
                sa.Integer(),
                sa.ForeignKey("donors.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("wizarr_invite_code", sa.String(128), nullable=True),
            sa.Column("wizarr_invite_url", sa.Text(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("plex_revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )

    if "payments" not in existing:
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column(
                "donor_id",
                sa.Integer(),
                sa.ForeignKey("donors.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("paypal_payment_id", sa.String(128), nullable=True),
            sa.Column("amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("currency", sa.String(8), nullable=True),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )

    if "events" not in existing:
        op.create_table(
            "events",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("event_type", sa.String(100), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )

    if "settings" not in existing:
        op.create_table(
            "settings",
            sa.Column("key", sa.String(64), primary_key=True),
            sa.Column("value", sa.Text(), nullable=False),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("settings")
    op.drop_table("events")
    op.drop_table("payments")
    op.drop_table("invites")
    op.drop_table("donors")
