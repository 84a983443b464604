"""Fixtures for integration tests against a real SQLite store."""

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from plexdonate.persistence.tables import metadata
from tests.di import build_test_container


@pytest_asyncio.fixture
async def integration_env(tmp_path, monkeypatch):
    """REQUEST-scope container with SQL persistence on a fresh database file.

    Provider clients stay mocked.
    """
    monkeypatch.setenv("DATABASE_FILE", str(tmp_path / "plex-donate.db"))
    container = build_test_container(unmock={"persistence"})

    engine = await container.get(AsyncEngine)
    async with engine.begin() as connection:
        await connection.run_sync(metadata.create_all)

    async with container() as request_container:
        yield request_container

    await container.close()
