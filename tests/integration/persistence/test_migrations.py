"""Integration tests for schema migrations on SQLite stores."""

import sqlite3

from plexdonate.config import Settings
from plexdonate.persistence.migrations import run_migrations
from plexdonate.persistence.tables import metadata

LEGACY_SCHEMA = """
CREATE TABLE donors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email VARCHAR(255) NOT NULL,
    name VARCHAR(255),
    paypal_subscription_id VARCHAR(128) NOT NULL UNIQUE,
    status VARCHAR(32) NOT NULL DEFAULT 'pending',
    last_payment_at DATETIME,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE invites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    donor_id INTEGER NOT NULL REFERENCES donors(id) ON DELETE CASCADE,
    wizarr_invite_code VARCHAR(128),
    wizarr_invite_url TEXT,
    note TEXT,
    email_sent_at DATETIME,
    revoked_at DATETIME,
    plex_revoked_at DATETIME,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE payments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    donor_id INTEGER NOT NULL REFERENCES donors(id) ON DELETE CASCADE,
    paypal_payment_id VARCHAR(128),
    amount NUMERIC(12, 2),
    currency VARCHAR(8),
    paid_at DATETIME NOT NULL,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type VARCHAR(100) NOT NULL,
    payload JSON,
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE invite_links (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    token VARCHAR(64) NOT NULL UNIQUE,
    donor_id INTEGER NOT NULL REFERENCES donors(id) ON DELETE CASCADE,
    session_token VARCHAR(128),
    created_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_used_at DATETIME
);

INSERT INTO donors (id, email, name, paypal_subscription_id, status)
VALUES (1, 'fan@example.com', 'Fan', 'I-LEGACY', 'active');
INSERT INTO invites (id, donor_id, wizarr_invite_code, wizarr_invite_url)
VALUES (1, 1, 'OLD', 'https://wizarr.example.com/j/OLD'),
       (2, 1, 'NEW', 'https://wizarr.example.com/j/NEW');
INSERT INTO payments (id, donor_id, paypal_payment_id, amount, currency, paid_at)
VALUES (1, 1, 'CAP-1', 5.00, 'USD', '2024-01-01 00:00:00'),
       (2, 1, 'CAP-1', 5.00, 'USD', '2024-01-01 00:00:00'),
       (3, 1, NULL, 5.00, 'USD', '2024-02-01 00:00:00');
INSERT INTO invite_links (id, token, donor_id, session_token)
VALUES (1, 'tok-1', 1, 'sess');
"""


def _columns(connection: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in connection.execute(f"PRAGMA table_info({table})")}


def _tables(connection: sqlite3.Connection) -> set[str]:
    rows = connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in rows}


class TestFreshStore:
    def test_creates_every_table(self, tmp_path):
        """An empty store is migrated to the full schema."""
        path = tmp_path / "fresh.db"

        run_migrations(Settings(database_file=str(path)))

        with sqlite3.connect(path) as connection:
            tables = _tables(connection)
            assert set(metadata.tables) <= tables
            assert "alembic_version" in tables
            assert set(c.name for c in metadata.tables["donors"].columns) <= _columns(
                connection, "donors"
            )


class TestLegacyStore:
    """Tests for evolving a store created by the legacy schema."""

    def _legacy_store(self, tmp_path):
        path = tmp_path / "legacy.db"
        with sqlite3.connect(path) as connection:
            connection.executescript(LEGACY_SCHEMA)
        return path

    def test_columns_renamed_and_rows_kept(self, tmp_path):
        """Legacy columns are renamed in place and no row is lost."""
        # Arrange
        path = self._legacy_store(tmp_path)

        # Act
        run_migrations(Settings(database_file=str(path)))

        # Assert
        with sqlite3.connect(path) as connection:
            donor_columns = _columns(connection, "donors")
            assert "subscription_id" in donor_columns
            assert "paypal_subscription_id" not in donor_columns
            assert {
                "access_expires_at",
                "plex_email",
                "stripe_subscription_id",
                "trial_reminder_sent_at",
            } <= donor_columns
            assert connection.execute(
                "SELECT subscription_id, status FROM donors"
            ).fetchall() == [("I-LEGACY", "active")]

            invite_columns = _columns(connection, "invites")
            assert {"plex_invite_id", "invite_url", "shared_libraries"} <= invite_columns
            assert connection.execute(
                "SELECT plex_invite_id FROM invites ORDER BY id"
            ).fetchall() == [("OLD",), ("NEW",)]

            assert connection.execute(
                "SELECT token, donor_id FROM invite_links"
            ).fetchall() == [("tok-1", 1)]
            assert "prospects" in _tables(connection)

    def test_one_active_invite_per_donor(self, tmp_path):
        """Older duplicate active invites are revoked, keeping the newest."""
        path = self._legacy_store(tmp_path)

        run_migrations(Settings(database_file=str(path)))

        with sqlite3.connect(path) as connection:
            active = connection.execute(
                "SELECT id FROM invites WHERE revoked_at IS NULL"
            ).fetchall()
            assert active == [(2,)]

    def test_payment_ids_made_unique(self, tmp_path):
        """Repeated and missing legacy payment ids are rewritten, not dropped."""
        path = self._legacy_store(tmp_path)

        run_migrations(Settings(database_file=str(path)))

        with sqlite3.connect(path) as connection:
            rows = connection.execute(
                "SELECT id, provider, provider_payment_id FROM payments ORDER BY id"
            ).fetchall()
            assert rows == [
                (1, "paypal", "CAP-1"),
                (2, "paypal", "CAP-1-dup-2"),
                (3, "paypal", "legacy-3"),
            ]

    def test_rerun_is_a_noop(self, tmp_path):
        """Running migrations on an up-to-date store changes nothing."""
        path = self._legacy_store(tmp_path)
        settings = Settings(database_file=str(path))
        run_migrations(settings)

        run_migrations(settings)

        with sqlite3.connect(path) as connection:
            assert connection.execute("SELECT COUNT(*) FROM payments").fetchone() == (3,)
            assert connection.execute(
                "SELECT version_num FROM alembic_version"
            ).fetchall() == [("5b8e2f4c1a90",)]
