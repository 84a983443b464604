"""share_links

Add prospects and shareable invite links:
- Prospects (people invited before they donate)
- Invite links owned by either a donor or a prospect

Older stores have an ``invite_links`` table whose ``donor_id`` is NOT NULL
and carries a session token. That table is recreated with its rows so the
owner column can be nullable, then each owner gets at most one link through
partial unique indexes on non-null values.

Revision ID: d75b03e6c218
Revises: 9c4e81d2a6f3
Create Date: 2025-09-08 21:05:17.264410

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "d75b03e6c218"
down_revision: Union[str, Sequence[str], None] = "9c4e81d2a6f3"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _create_invite_links(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token", sa.String(64), nullable=False),
        sa.Column(
            "donor_id",
            sa.Integer(),
            sa.ForeignKey("donors.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "prospect_id",
            sa.Integer(),
            sa.ForeignKey("prospects.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("token", name=f"uq_{name}_token"),
    )


def _needs_recreate(inspector: sa.Inspector) -> bool:
    columns = {c["name"]: c for c in inspector.get_columns("invite_links")}
    return "prospect_id" not in columns or not columns["donor_id"]["nullable"]


def _recreate_invite_links() -> None:
    bind = op.get_bind()

    _create_invite_links("invite_links_new")
    op.execute(
        """
        INSERT INTO invite_links_new (id, token, donor_id, created_at, last_used_at)
        SELECT id, token, donor_id, created_at, last_used_at FROM invite_links
        """
    )
    op.drop_table("invite_links")
    op.rename_table("invite_links_new", "invite_links")

    if bind.dialect.name == "postgresql":
        op.execute(
            "SELECT setval(pg_get_serial_sequence('invite_links', 'id'), "
            "COALESCE((SELECT MAX(id) FROM invite_links), 0) + 1, false)"
        )


def upgrade() -> None:
    """Upgrade schema."""
    inspector = sa.inspect(op.get_bind())
    tables = set(inspector.get_table_names())

    if "prospects" not in tables:
        op.create_table(
            "prospects",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("email", sa.String(255), nullable=True),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            ),
        )

    if "invite_links" not in tables:
        _create_invite_links("invite_links")
    elif _needs_recreate(inspector):
        _recreate_invite_links()

    indexes = {i["name"] for i in sa.inspect(op.get_bind()).get_indexes("invite_links")}
    if "invite_links_donor_unique" not in indexes:
        op.create_index(
            "invite_links_donor_unique",
            "invite_links",
            ["donor_id"],
            unique=True,
            sqlite_where=sa.text("donor_id IS NOT NULL"),
            postgresql_where=sa.text("donor_id IS NOT NULL"),
        )
    if "invite_links_prospect_unique" not in indexes:
        op.create_index(
            "invite_links_prospect_unique",
            "invite_links",
            ["prospect_id"],
            unique=True,
            sqlite_where=sa.text("prospect_id IS NOT NULL"),
            postgresql_where=sa.text("prospect_id IS NOT NULL"),
        )


def downgrade() -> None:
    """Downgrade schema.

    Prospect-owned links have no donor and are dropped with their table.
    """
    op.drop_index("invite_links_prospect_unique", table_name="invite_links")
    op.drop_index("invite_links_donor_unique", table_name="invite_links")
    op.drop_table("invite_links")
    op.drop_table("prospects")
