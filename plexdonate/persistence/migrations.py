"""Schema migration entry point."""

from pathlib import Path

import logfire
from alembic import command
from alembic.config import Config

from plexdonate.config import Settings

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def run_migrations(settings: Settings) -> None:
    """Upgrade the store to the latest revision.

    Safe on every start: an up-to-date store is left untouched and a legacy
    store is evolved additively.

    Args:
        settings: Settings whose database URL is migrated
    """
    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    with logfire.span("migrations.upgrade"):
        command.upgrade(alembic_cfg, "head")
