"""trial_reminders

Donors remember when their trial-ending reminder went out so the sweeper
sends it once per trial.

Revision ID: 5b8e2f4c1a90
Revises: d75b03e6c218
Create Date: 2025-10-02 09:14:40.518227

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5b8e2f4c1a90"
down_revision: Union[str, Sequence[str], None] = "d75b03e6c218"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    existing = {
        c["name"] for c in sa.inspect(op.get_bind()).get_columns("donors")
    }
    if "trial_reminder_sent_at" not in existing:
        with op.batch_alter_table("donors") as batch_op:
            batch_op.add_column(
                sa.Column(
                    "trial_reminder_sent_at", sa.DateTime(timezone=True), nullable=True
                )
            )


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table("donors") as batch_op:
        batch_op.drop_column("trial_reminder_sent_at")
