"""Test harness for unit, integration and E2E tests.

Settings are loaded from environment variables; ``tests/conftest.py`` sets
the test defaults before anything is imported.
"""

import pytest_asyncio

from plexdonate.util.di import Component
from tests.di import build_test_container


def create_env_fixture(unmock: set[Component] | None = None):
    """Factory for creating test environment fixtures.

    Creates a pytest fixture that:
    - Builds a test container with specified unmocking
    - Yields request-scoped container for service access
    - Closes the container (and its APP-scoped mocks) afterwards

    Args:
        unmock: Components to use real implementations for

    Returns:
        Pytest fixture function that yields AsyncContainer

    Usage:
        # Unit tests - everything mocked
        unit_env = create_env_fixture()

        @pytest.mark.asyncio
        async def test_activation(unit_env):
            reconciler = await unit_env.get(Reconciler)
            result = await reconciler.handle(event)
            assert result.outcome == "activated"
    """

    @pytest_asyncio.fixture
    async def _test_environment():
        # Build container with specified unmocking
        container = build_test_container(unmock=unmock or set())

        # Open request-scoped context
        async with container() as request_container:
            yield request_container

        await container.close()

    return _test_environment
