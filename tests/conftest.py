"""Test configuration and fixtures."""

import os

# Settings are read from the environment; pin the test defaults first
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SWEEPER__ENABLED", "false")
os.environ.setdefault("NOTIFICATIONS__ADMIN_EMAIL", "admin@example.com")
os.environ.setdefault("NOTIFICATIONS__ON_TRIAL_STARTED", "true")
os.environ.setdefault("PLEX_INVITE_STALE_DAYS", "0")

import pytest_asyncio  # noqa: E402

from plexdonate.adapter.mail import MockMailClient  # noqa: E402
from plexdonate.adapter.paypal import MockPayPalClient  # noqa: E402
from plexdonate.adapter.plex import MockPlexClient  # noqa: E402
from plexdonate.adapter.stripe import MockStripeClient  # noqa: E402
from plexdonate.domain.service import (  # noqa: E402
    MailClient,
    PayPalClient,
    PlexClient,
    StripeClient,
)
from plexdonate.persistence.repository.inmemory import InMemoryDatabase  # noqa: E402
from tests.di import build_test_container  # noqa: E402
from tests.harness import create_env_fixture  # noqa: E402

unit_env = create_env_fixture()


@pytest_asyncio.fixture
async def app_container():
    """APP-scope test container, for code that opens its own request scopes."""
    container = build_test_container()
    yield container
    await container.close()


@pytest_asyncio.fixture
async def db(unit_env) -> InMemoryDatabase:
    return await unit_env.get(InMemoryDatabase)


@pytest_asyncio.fixture
async def plex(unit_env) -> MockPlexClient:
    return await unit_env.get(PlexClient)


@pytest_asyncio.fixture
async def mail(unit_env) -> MockMailClient:
    return await unit_env.get(MailClient)


@pytest_asyncio.fixture
async def paypal(unit_env) -> MockPayPalClient:
    return await unit_env.get(PayPalClient)


@pytest_asyncio.fixture
async def stripe_client(unit_env) -> MockStripeClient:
    return await unit_env.get(StripeClient)
